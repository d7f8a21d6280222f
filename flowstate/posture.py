"""
============================================================
 FLOWSTATE — Geometric Posture Estimator
 MediaPipe Face Landmarker + Pose Landmarker (tasks API,
 VIDEO mode). Heavy resources are acquired by load() and
 released by close(); both are safe to repeat.
============================================================
"""

import logging
import threading
from typing import Optional

import cv2
import mediapipe as mp
import numpy as np

import config
from flowstate.geometry import analyze_landmarks
from flowstate.models import EstimatorReading

logger = logging.getLogger(__name__)


class PostureEstimator:
    """Scores posture from one video frame at a time."""

    def __init__(self,
                 face_model_path: str = config.FACE_LANDMARKER_MODEL_PATH,
                 pose_model_path: str = config.POSE_LANDMARKER_MODEL_PATH) -> None:
        self.face_model_path = face_model_path
        self.pose_model_path = pose_model_path
        self._face = None
        self._pose = None
        self._last_ts: int = -1
        # process() runs in a worker thread; close() must not free the
        # landmarkers underneath an in-flight detect_for_video call.
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._face is not None or self._pose is not None

    def load(self) -> bool:
        """Create both landmarkers. False (never raises) if neither can be built."""
        with self._lock:
            if self.loaded:
                return True
            BaseOptions = mp.tasks.BaseOptions
            vision = mp.tasks.vision
            try:
                self._face = vision.FaceLandmarker.create_from_options(
                    vision.FaceLandmarkerOptions(
                        base_options=BaseOptions(model_asset_path=self.face_model_path),
                        running_mode=vision.RunningMode.VIDEO,
                        num_faces=1,
                        min_face_detection_confidence=config.LANDMARK_MIN_CONFIDENCE,
                        min_tracking_confidence=config.LANDMARK_MIN_CONFIDENCE,
                    )
                )
                logger.info("[POSTURE] FaceLandmarker loaded ✓")
            except Exception as e:
                logger.warning("[POSTURE] FaceLandmarker unavailable: %s", e)
                self._face = None
            try:
                self._pose = vision.PoseLandmarker.create_from_options(
                    vision.PoseLandmarkerOptions(
                        base_options=BaseOptions(model_asset_path=self.pose_model_path),
                        running_mode=vision.RunningMode.VIDEO,
                        num_poses=1,
                        min_pose_detection_confidence=config.LANDMARK_MIN_CONFIDENCE,
                        min_tracking_confidence=config.LANDMARK_MIN_CONFIDENCE,
                    )
                )
                logger.info("[POSTURE] PoseLandmarker loaded ✓")
            except Exception as e:
                logger.warning("[POSTURE] PoseLandmarker unavailable: %s", e)
                self._pose = None
            self._last_ts = -1
            return self.loaded

    def process(self, frame: np.ndarray, timestamp_ms: int) -> Optional[EstimatorReading]:
        """
        Run both landmarkers on a BGR frame. Returns None when the
        estimator has been closed (a late call after teardown is a no-op).
        """
        with self._lock:
            if not self.loaded:
                return None
            # VIDEO mode rejects non-increasing timestamps
            if timestamp_ms <= self._last_ts:
                timestamp_ms = self._last_ts + 1
            self._last_ts = timestamp_ms

            rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

            face = None
            if self._face is not None:
                result = self._face.detect_for_video(mp_image, timestamp_ms)
                if result.face_landmarks:
                    face = result.face_landmarks[0]

            pose = None
            if self._pose is not None:
                result = self._pose.detect_for_video(mp_image, timestamp_ms)
                if result.pose_landmarks:
                    pose = result.pose_landmarks[0]

        return analyze_landmarks(face, pose)

    def close(self) -> None:
        """Release both landmarkers. Every close is attempted; errors are logged."""
        with self._lock:
            for name in ("_face", "_pose"):
                landmarker = getattr(self, name)
                if landmarker is None:
                    continue
                try:
                    landmarker.close()
                except Exception:
                    logger.exception("[POSTURE] Error closing %s landmarker", name.strip("_"))
                setattr(self, name, None)
            self._last_ts = -1
        logger.info("[POSTURE] Released resources.")
