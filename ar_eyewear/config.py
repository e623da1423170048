"""
Runtime configuration for the eyewear overlay.

Only the static-asset base path can be overridden from the environment;
everything else is a tunable constant of the overlay.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

ASSET_BASE_ENV = "AR_EYEWEAR_ASSET_BASE"
DEFAULT_ASSET_BASE = Path(__file__).parent / "assets"


@dataclass
class OverlayConfig:
    """Tunable constants for capture, mapping and rendering."""

    # Capture
    camera_index: int = 0
    frame_width: int = 600
    frame_height: int = 600
    target_fps: float = 60.0

    # Asset
    asset_name: str = "glass.obj"
    asset_base: Path = DEFAULT_ASSET_BASE
    initial_scale: float = 0.01
    initial_position: Tuple[float, float, float] = (0.0, 0.0, -3.0)

    # Landmark -> transform mapping
    reference_eye_distance: float = 50.0  # px between eyes at scale 1.0
    reach_x: float = 3.0
    reach_y: float = 2.0
    overlay_z: float = -3.0
    min_scale: Optional[float] = None

    # Scene
    camera_fov: float = 75.0
    camera_near: float = 0.1
    camera_far: float = 1000.0
    camera_z: float = 5.0
    light_position: Tuple[float, float, float] = (0.0, 0.0, 10.0)
    light_intensity: float = 1.0
    light_range: float = 100.0
    ambient_color: int = 0x404040
    overlay_color: Tuple[float, float, float] = (0.1, 0.1, 0.12)

    # Debug
    debug_markers: bool = True
    marker_radius: int = 5
    log_level: int = field(default=logging.INFO)

    @property
    def asset_path(self) -> Path:
        return Path(self.asset_base) / self.asset_name

    @property
    def aspect(self) -> float:
        return self.frame_width / self.frame_height


def load_config(**overrides) -> OverlayConfig:
    """
    Build a config, honouring the asset base path from the environment.

    Args:
        **overrides: Field values that take precedence over defaults and env

    Returns:
        OverlayConfig instance
    """
    base = os.environ.get(ASSET_BASE_ENV)
    if base and "asset_base" not in overrides:
        overrides["asset_base"] = Path(base)
    return OverlayConfig(**overrides)
