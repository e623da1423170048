"""
Pose estimation using MediaPipe Pose.

This module ONLY turns camera frames into named landmarks.
NO rendering, NO OpenGL - just data.
"""

import asyncio
import logging
import threading
from typing import Dict, List, Optional

import cv2

try:
    import mediapipe as mp
    MEDIAPIPE_AVAILABLE = True
except ImportError:
    MEDIAPIPE_AVAILABLE = False
    mp = None

from .errors import ModelInitError
from .types import Landmark, LandmarkSet

logger = logging.getLogger(__name__)

MODEL_NAME = "mediapipe_pose_lite"

# Canonical keypoint names -> MediaPipe PoseLandmark member names
KEYPOINT_NAMES: Dict[str, str] = {
    "nose": "NOSE",
    "left_eye": "LEFT_EYE",
    "right_eye": "RIGHT_EYE",
    "left_ear": "LEFT_EAR",
    "right_ear": "RIGHT_EAR",
    "left_shoulder": "LEFT_SHOULDER",
    "right_shoulder": "RIGHT_SHOULDER",
    "left_elbow": "LEFT_ELBOW",
    "right_elbow": "RIGHT_ELBOW",
    "left_wrist": "LEFT_WRIST",
    "right_wrist": "RIGHT_WRIST",
    "left_hip": "LEFT_HIP",
    "right_hip": "RIGHT_HIP",
    "left_knee": "LEFT_KNEE",
    "right_knee": "RIGHT_KNEE",
    "left_ankle": "LEFT_ANKLE",
    "right_ankle": "RIGHT_ANKLE",
}


def landmarks_from_result(pose_landmarks, width: int, height: int,
                          index_of: Dict[str, int]) -> LandmarkSet:
    """
    Convert one MediaPipe landmark list to a pixel-space LandmarkSet.

    Args:
        pose_landmarks: ``results.pose_landmarks`` (has ``.landmark``)
        width: Frame width in pixels
        height: Frame height in pixels
        index_of: Canonical name -> landmark index

    Returns:
        LandmarkSet ordered like index_of
    """
    points = pose_landmarks.landmark
    out = []
    for name, idx in index_of.items():
        if idx >= len(points):
            continue
        p = points[idx]
        out.append(Landmark(
            name=name,
            x=float(p.x) * width,
            y=float(p.y) * height,
            confidence=float(getattr(p, "visibility", 0.0) or 0.0),
        ))
    return LandmarkSet(tuple(out))


class EstimationStage:
    """
    Wrapper for a single-subject, low-latency MediaPipe Pose model.

    initialize() must complete before estimate() is called.
    """

    def __init__(self,
                 min_detection_confidence: float = 0.5,
                 min_tracking_confidence: float = 0.5):
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self._pose = None
        self._index_of: Dict[str, int] = {}
        self._closed = False
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self._pose is not None

    async def initialize(self):
        """
        Build the pose model off the event loop.

        Raises:
            ModelInitError: mediapipe missing or the graph failed to start
        """
        if not MEDIAPIPE_AVAILABLE:
            raise ModelInitError(
                MODEL_NAME,
                cause=RuntimeError("MediaPipe is not installed. Install with: pip install mediapipe"),
            )

        loop = asyncio.get_running_loop()
        try:
            ready = await loop.run_in_executor(None, self._create)
        except Exception as e:
            raise ModelInitError(MODEL_NAME, cause=e) from e

        if ready:
            logger.info("Pose detection model loaded (%s)", MODEL_NAME)
        else:
            logger.info("Pose detection model closed before it was ready")

    def _create(self) -> bool:
        pose = self._build()
        with self._lock:
            if not self._closed:
                self._pose = pose
                return True
        # close() ran while the graph was starting
        pose.close()
        return False

    def _build(self):
        pose_landmark = mp.solutions.pose.PoseLandmark
        self._index_of = {
            name: int(getattr(pose_landmark, member))
            for name, member in KEYPOINT_NAMES.items()
        }
        return mp.solutions.pose.Pose(
            static_image_mode=False,
            model_complexity=0,
            smooth_landmarks=True,
            enable_segmentation=False,
            min_detection_confidence=self.min_detection_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
        )

    async def estimate(self, frame) -> List[LandmarkSet]:
        """
        Detect the subject in a BGR frame.

        Args:
            frame: OpenCV BGR image (numpy array)

        Returns:
            Zero or one LandmarkSet; empty when nobody is visible
        """
        if frame is None or self._pose is None:
            return []

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._process, frame)

    def _process(self, frame) -> List[LandmarkSet]:
        height, width = frame.shape[:2]
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        pose = self._pose
        if pose is None:
            return []
        results = pose.process(rgb_frame)

        if results is None or not results.pose_landmarks:
            return []
        return [landmarks_from_result(results.pose_landmarks, width, height, self._index_of)]

    def close(self):
        """Release MediaPipe resources. Idempotent, and safe while initialize() is pending."""
        with self._lock:
            self._closed = True
            pose, self._pose = self._pose, None
        if pose is not None:
            pose.close()
            logger.info("Pose detection model closed")
