"""
Pure geometry for the overlay scene.

Matrices and vertex buffers as numpy arrays.
NO OpenGL imports here - gl_app.py uploads what this module builds.
"""

import math
from typing import Tuple

import numpy as np


def perspective_matrix(fov_deg: float, aspect: float,
                       near: float, far: float) -> np.ndarray:
    """
    Build a right-handed perspective projection (row-major).

    Args:
        fov_deg: Vertical field of view in degrees
        aspect: Width / height
        near: Near clip distance (> 0)
        far: Far clip distance (> near)

    Returns:
        4x4 float32 matrix
    """
    f = 1.0 / math.tan(math.radians(fov_deg) / 2.0)

    proj = np.zeros((4, 4), dtype=np.float32)
    proj[0, 0] = f / aspect
    proj[1, 1] = f
    proj[2, 2] = (far + near) / (near - far)
    proj[2, 3] = (2.0 * far * near) / (near - far)
    proj[3, 2] = -1.0
    return proj


def view_matrix(camera_position: Tuple[float, float, float]) -> np.ndarray:
    """View matrix for a camera looking down -Z from camera_position."""
    view = np.eye(4, dtype=np.float32)
    view[0, 3] = -camera_position[0]
    view[1, 3] = -camera_position[1]
    view[2, 3] = -camera_position[2]
    return view


def model_matrix(position: Tuple[float, float, float], scale: float) -> np.ndarray:
    """Model matrix with position and uniform scale."""
    model = np.eye(4, dtype=np.float32)

    model[0, 0] = scale
    model[1, 1] = scale
    model[2, 2] = scale

    model[0, 3] = position[0]
    model[1, 3] = position[1]
    model[2, 3] = position[2]

    return model


def hex_to_rgb(color: int) -> Tuple[float, float, float]:
    """0xRRGGBB to an (r, g, b) tuple in [0, 1]."""
    return (
        ((color >> 16) & 0xFF) / 255.0,
        ((color >> 8) & 0xFF) / 255.0,
        (color & 0xFF) / 255.0,
    )


def mesh_buffers(vertices, faces,
                 normals=None) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Pack mesh data into contiguous GL-ready arrays.

    Missing normals are computed per vertex by accumulating face normals.

    Args:
        vertices: Nx3 vertex positions
        faces: Mx3 triangle indices
        normals: Optional Nx3 vertex normals

    Returns:
        Tuple of (vertices float32 Nx3, normals float32 Nx3, indices uint32 Mx3)
    """
    verts = np.ascontiguousarray(np.asarray(vertices, dtype=np.float32).reshape(-1, 3))
    indices = np.ascontiguousarray(np.asarray(faces, dtype=np.uint32).reshape(-1, 3))

    if normals is None or len(normals) != len(verts):
        normals = np.zeros_like(verts)
        if len(indices):
            tri = verts[indices]
            face_normals = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
            for corner in range(3):
                np.add.at(normals, indices[:, corner], face_normals)
        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        lengths[lengths == 0] = 1.0
        normals = normals / lengths

    norms = np.ascontiguousarray(np.asarray(normals, dtype=np.float32).reshape(-1, 3))
    return verts, norms, indices


def fullscreen_quad() -> np.ndarray:
    """Two triangles covering clip space: x, y, u, v per vertex."""
    return np.array([
        # position   texcoord
        -1.0, -1.0,  0.0, 1.0,
         1.0, -1.0,  1.0, 1.0,
         1.0,  1.0,  1.0, 0.0,
        -1.0, -1.0,  0.0, 1.0,
         1.0,  1.0,  1.0, 0.0,
        -1.0,  1.0,  0.0, 0.0,
    ], dtype=np.float32)
