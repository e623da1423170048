"""
Overlay asset loading.

Reads the eyewear mesh with trimesh and exposes the mutable transform the
tracking loop writes to. No rendering here.
"""

import asyncio
import io
import logging
import os
from pathlib import Path
from typing import Callable, Optional, Union

import numpy as np
import trimesh

from .errors import AssetLoadError
from .primitives import mesh_buffers
from .types import OverlayTransform

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

CHUNK_SIZE = 64 * 1024


def resolve_asset_path(name: str, base: Union[str, Path]) -> Path:
    """
    Resolve an asset name against the static-asset base path.

    Args:
        name: Asset file name, e.g. "glass.obj"
        base: Base directory assets are served from

    Returns:
        Absolute path to the asset
    """
    return (Path(base) / name).expanduser().resolve()


class OverlayHandle:
    """
    A loaded overlay mesh plus its scene transform.

    The geometry is fixed after load; only ``transform`` changes.
    """

    def __init__(self,
                 vertices: np.ndarray,
                 normals: np.ndarray,
                 indices: np.ndarray,
                 transform: Optional[OverlayTransform] = None,
                 source: str = ""):
        self.vertices = vertices
        self.normals = normals
        self.indices = indices
        self.transform = transform or OverlayTransform()
        self.source = source

    @property
    def index_count(self) -> int:
        return int(self.indices.size)

    def set_pose(self, transform: OverlayTransform):
        """Copy position and scale from transform into the handle."""
        self.transform.position_x = transform.position_x
        self.transform.position_y = transform.position_y
        self.transform.position_z = transform.position_z
        self.transform.scale = transform.scale

    def __repr__(self) -> str:
        return (f"OverlayHandle(source={self.source!r}, "
                f"vertices={len(self.vertices)}, transform={self.transform})")


class OverlayAsset:
    """
    One-shot asynchronous loader for the eyewear mesh.

    Progress is reported as a fraction in [0, 1]; it is purely informational.
    """

    def __init__(self,
                 initial_scale: float = 0.01,
                 initial_position=(0.0, 0.0, -3.0),
                 chunk_size: int = CHUNK_SIZE):
        self.initial_scale = initial_scale
        self.initial_position = tuple(initial_position)
        self.chunk_size = chunk_size
        self.handle: Optional[OverlayHandle] = None

    async def load(self, path: Union[str, Path],
                   on_progress: Optional[ProgressCallback] = None) -> OverlayHandle:
        """
        Load the mesh at path.

        Args:
            path: OBJ file location
            on_progress: Optional callback receiving the loaded fraction,
                called on the event loop thread

        Returns:
            OverlayHandle positioned at the initial transform

        Raises:
            AssetLoadError: File unreachable, unparsable, or has no triangles
        """
        path = str(path)
        loop = asyncio.get_running_loop()

        def _report(fraction: float):
            # Runs in the executor; callbacks are handed back to the event loop
            logger.debug("Loading overlay asset... %.2f%%", fraction * 100.0)
            if on_progress is not None:
                loop.call_soon_threadsafe(on_progress, fraction)

        try:
            data = await loop.run_in_executor(None, self._read_bytes, path, _report)
        except OSError as e:
            raise AssetLoadError(path, reason="unreachable", cause=e) from e

        try:
            mesh = await loop.run_in_executor(None, self._parse, data, path)
        except AssetLoadError:
            raise
        except Exception as e:
            raise AssetLoadError(path, reason="malformed", cause=e) from e

        vertices, normals, indices = mesh_buffers(
            mesh.vertices, mesh.faces, mesh.vertex_normals
        )

        x, y, z = self.initial_position
        self.handle = OverlayHandle(
            vertices, normals, indices,
            transform=OverlayTransform(x, y, z, self.initial_scale),
            source=path,
        )
        logger.info("Overlay asset loaded: %s (%d vertices, %d triangles)",
                    path, len(vertices), len(indices))
        return self.handle

    def _read_bytes(self, path: str, report: ProgressCallback) -> bytes:
        """Read the whole file in chunks, reporting progress after each one."""
        total = os.path.getsize(path)
        buffer = bytearray()

        with open(path, "rb") as f:
            while True:
                chunk = f.read(self.chunk_size)
                if not chunk:
                    break
                buffer.extend(chunk)
                report(len(buffer) / total if total else 1.0)

        if not total:
            report(1.0)
        return bytes(buffer)

    @staticmethod
    def _parse(data: bytes, path: str) -> trimesh.Trimesh:
        file_type = Path(path).suffix.lstrip(".").lower() or "obj"
        mesh = trimesh.load(io.BytesIO(data), file_type=file_type, force="mesh",
                            process=False)

        if not isinstance(mesh, trimesh.Trimesh) or len(mesh.faces) == 0:
            raise AssetLoadError(path, reason="no triangles")
        return mesh
