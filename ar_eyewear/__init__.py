"""Eyewear AR overlay: places a 3D glasses mesh on the eyes of a live camera feed."""

from importlib import import_module
from typing import Any

from .errors import AssetLoadError, CaptureUnavailableError, EyewearError, ModelInitError
from .types import FrameGeometry, Landmark, LandmarkSet, NormalizedPose, OverlayTransform

__version__ = "0.1.0"

__all__ = [
    "Landmark",
    "LandmarkSet",
    "FrameGeometry",
    "NormalizedPose",
    "OverlayTransform",
    "EyewearError",
    "ModelInitError",
    "AssetLoadError",
    "CaptureUnavailableError",
    "normalized_pose",
    "overlay_transform",
    "TrackingLoop",
    "EyewearApp",
    "run_eyewear_overlay",
]


def _load(module: str, name: str) -> Any:
    return getattr(import_module(module, __name__), name)


def normalized_pose(left, right, geometry):
    return _load(".mapping", "normalized_pose")(left, right, geometry)


def overlay_transform(pose, config):
    return _load(".mapping", "overlay_transform")(pose, config)


class TrackingLoop:  # type: ignore[override]
    def __new__(cls, *args, **kwargs):
        loop_cls = _load(".pipeline", "TrackingLoop")
        return loop_cls(*args, **kwargs)


class EyewearApp:  # type: ignore[override]
    def __new__(cls, *args, **kwargs):
        app_cls = _load(".gl_app", "EyewearApp")
        return app_cls(*args, **kwargs)


def run_eyewear_overlay(config=None):
    return _load(".gl_app", "run_eyewear_overlay")(config)
