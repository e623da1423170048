"""
Plain data carried through the tracking pipeline.

Coordinates are in pixel space of the capture frame unless noted.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class Landmark:
    """A single named 2D point reported by the pose model."""

    name: str
    x: float
    y: float
    confidence: float = 0.0


@dataclass(frozen=True)
class LandmarkSet:
    """Ordered landmarks for one detected subject."""

    landmarks: Tuple[Landmark, ...] = ()

    def get(self, name: str) -> Optional[Landmark]:
        for landmark in self.landmarks:
            if landmark.name == name:
                return landmark
        return None

    def __len__(self) -> int:
        return len(self.landmarks)


@dataclass(frozen=True)
class FrameGeometry:
    """Width and height of the capture stream."""

    width: int
    height: int


@dataclass(frozen=True)
class NormalizedPose:
    """Eye midpoint in normalized device coordinates plus eye distance in pixels."""

    ndc_x: float
    ndc_y: float
    interocular_distance: float


@dataclass
class OverlayTransform:
    """Position and uniform scale of the overlay inside the 3D scene."""

    position_x: float = 0.0
    position_y: float = 0.0
    position_z: float = 0.0
    scale: float = 1.0

    @property
    def position(self) -> Tuple[float, float, float]:
        return (self.position_x, self.position_y, self.position_z)

    def copy(self) -> "OverlayTransform":
        return OverlayTransform(
            self.position_x, self.position_y, self.position_z, self.scale
        )
