"""Shared fixtures and fake pipeline collaborators."""
import sys
from pathlib import Path

import numpy as np
import pytest

# Add the repository root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ar_eyewear.asset import OverlayHandle
from ar_eyewear.capture import StreamHandle
from ar_eyewear.config import OverlayConfig
from ar_eyewear.errors import AssetLoadError, CaptureUnavailableError, ModelInitError
from ar_eyewear.types import FrameGeometry, Landmark, LandmarkSet, OverlayTransform


def make_landmark_set(left=(200.0, 300.0), right=(400.0, 300.0), include=("left_eye", "right_eye")):
    """LandmarkSet with a nose plus whichever eyes are listed in include."""
    points = [Landmark("nose", 300.0, 350.0, 0.9)]
    if "left_eye" in include:
        points.append(Landmark("left_eye", left[0], left[1], 0.9))
    if "right_eye" in include:
        points.append(Landmark("right_eye", right[0], right[1], 0.9))
    return LandmarkSet(tuple(points))


class FakeEstimation:
    """Pose model returning scripted results; the last result repeats."""

    def __init__(self, events, results=None, fail=False, gate=None, errors=()):
        self.events = events
        self.results = list(results or [])
        self.fail = fail
        self.gate = gate
        self.errors = set(errors)  # call numbers that raise
        self.setup_gate = None
        self.pending = False
        self.calls = 0
        self.closed = 0

    async def initialize(self):
        self.events.append("estimation.initialize")
        if self.setup_gate is not None:
            self.pending = True
            await self.setup_gate.wait()
        if self.fail:
            raise ModelInitError("fake_model")

    async def estimate(self, frame):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.calls in self.errors:
            raise RuntimeError(f"model failure on call {self.calls}")
        if not self.results:
            return []
        return self.results[min(self.calls - 1, len(self.results) - 1)]

    def close(self):
        self.closed += 1


class FakeAsset:
    def __init__(self, events, fail=False):
        self.events = events
        self.fail = fail
        self.paths = []
        self.setup_gate = None
        self.pending = False

    async def load(self, path, on_progress=None):
        self.events.append("asset.load")
        self.paths.append(path)
        if self.setup_gate is not None:
            self.pending = True
            await self.setup_gate.wait()
        if self.fail:
            raise AssetLoadError(str(path), reason="fake")
        if on_progress is not None:
            on_progress(0.5)
            on_progress(1.0)
        return OverlayHandle(
            np.zeros((3, 3), dtype=np.float32),
            np.zeros((3, 3), dtype=np.float32),
            np.array([[0, 1, 2]], dtype=np.uint32),
            transform=OverlayTransform(0.0, 0.0, -3.0, 0.01),
            source=str(path),
        )


class FakeCapture:
    def __init__(self, events, fail=False, width=600, height=600):
        self.events = events
        self.fail = fail
        self.width = width
        self.height = height
        self.stop_calls = 0
        self.reads = 0
        self.setup_gate = None
        self.pending = False

    async def start(self, width=600, height=600):
        self.events.append("capture.start")
        if self.setup_gate is not None:
            self.pending = True
            await self.setup_gate.wait()
        if self.fail:
            raise CaptureUnavailableError(0, width, height, reason="fake")
        frame = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        return StreamHandle(0, FrameGeometry(self.width, self.height), frame)

    async def read(self):
        self.reads += 1
        return np.zeros((self.height, self.width, 3), dtype=np.uint8)

    def stop(self):
        self.stop_calls += 1


class FakeScene:
    def __init__(self, events, fail_setup=False):
        self.events = events
        self.fail_setup = fail_setup
        self.renders = 0
        self.annotations = []
        self.disposed = 0
        self.handle = None
        self.size = None

    def setup(self, size):
        self.events.append("scene.setup")
        if self.fail_setup:
            raise RuntimeError("no GL context")
        self.size = size

    def attach(self, handle):
        self.events.append("scene.attach")
        self.handle = handle

    def render_frame(self):
        self.events.append("scene.render")
        self.renders += 1

    def annotate_eyes(self, left, right, geometry=None):
        self.annotations.append((left, right))

    def dispose(self):
        self.disposed += 1


@pytest.fixture
def config():
    return OverlayConfig()


@pytest.fixture
def events():
    return []


@pytest.fixture
def fakes(events):
    """A full set of working collaborators sharing one event log."""
    return {
        "estimation": FakeEstimation(events, results=[[make_landmark_set()]]),
        "asset": FakeAsset(events),
        "capture": FakeCapture(events),
        "scene": FakeScene(events),
    }
