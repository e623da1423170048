"""
Camera capture wrapper around OpenCV VideoCapture.

Owns the device for the whole session: start() acquires it, stop()
releases it. stop() is safe to call any number of times.
"""

import asyncio
import logging
import threading
from typing import Callable, Optional

import cv2
import numpy as np

from .errors import CaptureUnavailableError
from .types import FrameGeometry

logger = logging.getLogger(__name__)


class StreamHandle:
    """Live stream returned by CaptureSource.start()."""

    def __init__(self, device: int, geometry: FrameGeometry, first_frame: np.ndarray):
        self.device = device
        self.geometry = geometry
        self.first_frame = first_frame

    def __repr__(self) -> str:
        return f"StreamHandle(device={self.device}, {self.geometry.width}x{self.geometry.height})"


class CaptureSource:
    """
    Asynchronous facade over a blocking OpenCV camera.

    Blocking calls run in the default executor so the event loop keeps
    ticking while the camera warms up.
    """

    def __init__(self,
                 camera_index: int = 0,
                 capture_factory: Callable[[int], "cv2.VideoCapture"] = cv2.VideoCapture):
        self.camera_index = camera_index
        self._capture_factory = capture_factory
        self.cap = None
        self.stream: Optional[StreamHandle] = None
        self.frame_ready = asyncio.Event()
        self.release_count = 0
        self._stopped = False
        # Guards cap/_stopped between stop() and the executor running _open()
        self._lock = threading.Lock()

    @property
    def geometry(self) -> Optional[FrameGeometry]:
        return self.stream.geometry if self.stream else None

    @property
    def is_running(self) -> bool:
        return self.stream is not None and not self._stopped

    async def start(self, width: int = 600, height: int = 600) -> StreamHandle:
        """
        Open the camera and wait for the first frame.

        Args:
            width: Requested frame width
            height: Requested frame height

        Returns:
            StreamHandle carrying the actual frame geometry

        Raises:
            CaptureUnavailableError: Device missing, refused, or silent
        """
        loop = asyncio.get_running_loop()
        try:
            frame = await loop.run_in_executor(None, self._open, width, height)
        except CaptureUnavailableError:
            self.stop()
            raise
        except Exception as e:
            self.stop()
            raise CaptureUnavailableError(self.camera_index, width, height, cause=e) from e

        if self._stopped:
            raise CaptureUnavailableError(self.camera_index, width, height,
                                          reason="stopped during startup")

        geometry =FrameGeometry(width=int(frame.shape[1]), height=int(frame.shape[0]))
        self.stream = StreamHandle(self.camera_index, geometry, frame)
        self.frame_ready.set()

        if (geometry.width, geometry.height) != (width, height):
            logger.warning("Camera delivered %dx%d instead of %dx%d",
                           geometry.width, geometry.height, width, height)
        logger.info("Camera %d streaming at %dx%d",
                    self.camera_index, geometry.width, geometry.height)
        return self.stream

    def _open(self, width: int, height: int) -> np.ndarray:
        cap = self._capture_factory(self.camera_index)
        with self._lock:
            if self._stopped:
                # stop() ran while the device was opening
                if cap is not None:
                    cap.release()
                    self.release_count += 1
                raise CaptureUnavailableError(self.camera_index, width, height,
                                              reason="stopped during startup")
            self.cap = cap

        if cap is None or not cap.isOpened():
            raise CaptureUnavailableError(self.camera_index, width, height,
                                          reason="device not opened")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        ret, frame = cap.read()
        if not ret or frame is None:
            raise CaptureUnavailableError(self.camera_index, width, height,
                                          reason="no frame delivered")
        return frame

    async def read(self) -> Optional[np.ndarray]:
        """Grab the next frame, or None if the stream is stopped or the read fails."""
        if not self.is_running:
            return None

        loop = asyncio.get_running_loop()
        ret, frame = await loop.run_in_executor(None, self.cap.read)
        if not ret:
            return None
        return frame

    def stop(self):
        """Release the camera. Idempotent, and safe while start() is pending."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            cap, self.cap = self.cap, None

        if cap is not None:
            cap.release()
            self.release_count += 1
            logger.info("Camera %d released", self.camera_index)
        self.frame_ready.clear()
