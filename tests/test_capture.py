"""
Tests for CaptureSource with a fake OpenCV device.

NO camera required: VideoCapture is replaced through capture_factory.
"""

import asyncio

import numpy as np
import pytest

from ar_eyewear.capture import CaptureSource
from ar_eyewear.errors import CaptureUnavailableError
from ar_eyewear.types import FrameGeometry


class FakeDevice:
    """Stand-in for cv2.VideoCapture."""

    def __init__(self, opened=True, frame_shape=(600, 600, 3), delivers=True):
        self.opened = opened
        self.frame_shape = frame_shape
        self.delivers = delivers
        self.props = {}
        self.release_calls = 0

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        if not self.delivers:
            return False, None
        return True, np.zeros(self.frame_shape, dtype=np.uint8)

    def release(self):
        self.release_calls += 1
        self.opened = False


def source_for(device):
    return CaptureSource(camera_index=0, capture_factory=lambda index: device)


class TestStart:
    """start() acquires the device and reports the real frame size."""

    def test_geometry_from_first_frame(self):
        device = FakeDevice(frame_shape=(480, 640, 3))
        source = source_for(device)

        stream = asyncio.run(source.start(600, 600))

        assert stream.geometry == FrameGeometry(640, 480)
        assert source.geometry == FrameGeometry(640, 480)
        assert stream.first_frame.shape == (480, 640, 3)
        assert source.frame_ready.is_set()
        assert source.is_running

    def test_requests_resolution(self):
        import cv2

        device = FakeDevice()
        asyncio.run(source_for(device).start(600, 600))

        assert device.props[cv2.CAP_PROP_FRAME_WIDTH] == 600
        assert device.props[cv2.CAP_PROP_FRAME_HEIGHT] == 600

    def test_device_not_opened(self):
        device = FakeDevice(opened=False)
        source = source_for(device)

        with pytest.raises(CaptureUnavailableError) as excinfo:
            asyncio.run(source.start())

        assert "device not opened" in str(excinfo.value)
        assert device.release_calls == 1
        assert not source.is_running

    def test_no_frame(self):
        device = FakeDevice(delivers=False)

        with pytest.raises(CaptureUnavailableError):
            asyncio.run(source_for(device).start())
        assert device.release_calls == 1

    def test_factory_error_is_wrapped(self):
        def explode(index):
            raise PermissionError("camera access denied")

        source = CaptureSource(camera_index=3, capture_factory=explode)

        with pytest.raises(CaptureUnavailableError) as excinfo:
            asyncio.run(source.start())
        assert "device=3" in str(excinfo.value)
        assert isinstance(excinfo.value.cause, PermissionError)


class TestReadAndStop:
    """Frame reads and idempotent release."""

    def test_read_returns_frames(self):
        source = source_for(FakeDevice())

        async def scenario():
            await source.start()
            return await source.read()

        frame = asyncio.run(scenario())
        assert frame.shape == (600, 600, 3)

    def test_stop_twice_releases_once(self):
        device = FakeDevice()
        source = source_for(device)
        asyncio.run(source.start())

        source.stop()
        source.stop()

        assert device.release_calls == 1
        assert source.release_count == 1
        assert not source.frame_ready.is_set()

    def test_stop_without_start(self):
        source = source_for(FakeDevice())
        source.stop()
        assert source.release_count == 0

    def test_read_after_stop(self):
        source = source_for(FakeDevice())

        async def scenario():
            await source.start()
            source.stop()
            return await source.read()

        assert asyncio.run(scenario()) is None


class TestStopWhileOpening:
    """stop() racing the executor thread that opens the device."""

    def test_device_opened_after_stop_is_released(self):
        import threading

        device = FakeDevice()
        entered, proceed = threading.Event(), threading.Event()

        def slow_factory(index):
            entered.set()
            proceed.wait(5)
            return device

        source = CaptureSource(capture_factory=slow_factory)

        async def scenario():
            starting = asyncio.create_task(source.start())
            while not entered.is_set():
                await asyncio.sleep(0.01)
            source.stop()
            proceed.set()
            with pytest.raises(CaptureUnavailableError) as excinfo:
                await starting
            return excinfo.value

        error = asyncio.run(scenario())

        assert "stopped during startup" in str(error)
        assert device.release_calls == 1
        assert source.release_count == 1
        assert not source.is_running
        assert source.cap is None


def test_frame_ready_waitable_inside_asyncio_run():
    # Source built outside any running loop, awaited inside one
    source = source_for(FakeDevice())

    async def scenario():
        await source.start()
        await asyncio.wait_for(source.frame_ready.wait(), timeout=1.0)

    asyncio.run(scenario())
    assert source.frame_ready.is_set()
