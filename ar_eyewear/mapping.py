"""
Pure math mapping eye landmarks to the overlay transform.

This module contains ONLY pure functions with no OpenGL, camera or model
dependencies. Everything here is testable headless.
"""

import math
from typing import Optional, Tuple

from .config import OverlayConfig
from .types import (
    FrameGeometry, Landmark, LandmarkSet, NormalizedPose, OverlayTransform
)

LEFT_EYE = "left_eye"
RIGHT_EYE = "right_eye"


def find_eyes(landmark_set: Optional[LandmarkSet]) -> Optional[Tuple[Landmark, Landmark]]:
    """
    Pick the two eye landmarks out of a landmark set.

    Args:
        landmark_set: Landmarks of one subject (may be None)

    Returns:
        (left_eye, right_eye), or None if either is missing
    """
    if landmark_set is None:
        return None

    left = landmark_set.get(LEFT_EYE)
    right = landmark_set.get(RIGHT_EYE)
    if left is None or right is None:
        return None
    return left, right


def eye_midpoint(left: Landmark, right: Landmark) -> Tuple[float, float]:
    """Midpoint between the two eyes in pixels."""
    return ((left.x + right.x) / 2.0, (left.y + right.y) / 2.0)


def interocular_distance(left: Landmark, right: Landmark) -> float:
    """Euclidean pixel distance between the two eyes."""
    dx = right.x - left.x
    dy = right.y - left.y
    return math.sqrt(dx * dx + dy * dy)


def to_ndc(x: float, y: float, geometry: FrameGeometry) -> Tuple[float, float]:
    """
    Convert a pixel coordinate to normalized device coordinates.

    Image Y grows downward while scene Y grows upward, so Y is inverted.

    Args:
        x: Pixel X
        y: Pixel Y
        geometry: Frame size the pixel belongs to

    Returns:
        (ndc_x, ndc_y), each in [-1, 1] for points inside the frame
    """
    ndc_x = (x / geometry.width) * 2.0 - 1.0
    ndc_y = -((y / geometry.height) * 2.0 - 1.0)
    return ndc_x, ndc_y


def scale_factor(distance: float,
                 reference_distance: float = 50.0,
                 min_scale: Optional[float] = None) -> float:
    """
    Linear overlay scale from the interocular distance.

    Unclamped above; a very close subject yields a very large overlay.

    Args:
        distance: Interocular distance in pixels
        reference_distance: Eye distance that maps to scale 1.0
        min_scale: Optional lower bound

    Returns:
        Scale factor (0.0 for coincident eyes unless floored)
    """
    scale = distance / reference_distance
    if min_scale is not None:
        scale = max(scale, min_scale)
    return scale


def normalized_pose(left: Landmark, right: Landmark,
                    geometry: FrameGeometry) -> NormalizedPose:
    """Midpoint in NDC plus interocular distance for one pair of eyes."""
    mid_x, mid_y = eye_midpoint(left, right)
    ndc_x, ndc_y = to_ndc(mid_x, mid_y, geometry)
    return NormalizedPose(ndc_x, ndc_y, interocular_distance(left, right))


def overlay_transform(pose: NormalizedPose, config: OverlayConfig) -> OverlayTransform:
    """
    Place the overlay in the scene from a normalized pose.

    Args:
        pose: Output of normalized_pose
        config: Reach multipliers, depth and scale constants

    Returns:
        New OverlayTransform
    """
    scale = scale_factor(
        pose.interocular_distance,
        reference_distance=config.reference_eye_distance,
        min_scale=config.min_scale,
    )
    return OverlayTransform(
        position_x=pose.ndc_x * config.reach_x,
        position_y=pose.ndc_y * config.reach_y,
        position_z=config.overlay_z,
        scale=scale,
    )
