"""
============================================================
 FLOWSTATE — Threaded Webcam Capture
 One capture thread, latest frame published by atomic
 reference swap. Both detectors read the same reference.
============================================================
"""

import logging
import threading
import time

import cv2

import config

logger = logging.getLogger(__name__)


class Camera:
    """Shared webcam source. Only the session engine starts/stops it."""

    def __init__(self, src=None):
        self.src = src if src is not None else config.CAMERA_INDEX
        self.cap = None
        self._current_frame = None    # atomic reference
        self._frame_id = 0            # bumps on every new frame
        self._first_frame = threading.Event()
        self.running = False
        self._thread = None
        self.fps = 0.0
        self._frame_count = 0
        self._fps_timer = time.time()

    def start(self, timeout: float = config.CAMERA_OPEN_TIMEOUT) -> bool:
        """Open the device and start capturing. False if no frame arrives in time."""
        if self.running:
            return True
        self._connect()
        if self.cap is None or not self.cap.isOpened():
            logger.warning("[CAMERA] ✗ Failed to open source %s", self.src)
            self._release_cap()
            return False

        self._first_frame.clear()
        self.running = True
        self._thread = threading.Thread(target=self._update, daemon=True, name="Camera")
        self._thread.start()
        if not self._first_frame.wait(timeout):
            logger.warning("[CAMERA] ✗ No frame from source %s within %.1fs", self.src, timeout)
            self.stop()
            return False
        logger.info("[CAMERA] Capture thread started (source=%s)", self.src)
        return True

    def _connect(self) -> None:
        self._release_cap()
        cap = cv2.VideoCapture(self.src)
        if not cap.isOpened():
            cap.release()
            return

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, config.CAMERA_WIDTH)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, config.CAMERA_HEIGHT)
        cap.set(cv2.CAP_PROP_FPS, config.CAMERA_FPS)
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # latest frame, not a backlog

        actual_w = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_h = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info("[CAMERA] Opened source %s (%dx%d)", self.src, actual_w, actual_h)
        self.cap = cap

    def _release_cap(self) -> None:
        if self.cap is not None:
            try:
                self.cap.release()
            except Exception:
                logger.exception("[CAMERA] Error releasing capture device")
            self.cap = None

    def _update(self) -> None:
        while self.running:
            if self.cap is None or not self.cap.isOpened():
                logger.warning("[CAMERA] Lost connection. Reconnecting...")
                time.sleep(config.CAMERA_RECONNECT_DELAY)
                if self.running:
                    self._connect()
                continue

            ret, frame = self.cap.read()
            if not ret or frame is None:
                continue

            if config.CAMERA_FLIP_HORIZONTAL:
                frame = cv2.flip(frame, 1)

            self._current_frame = frame
            self._frame_id += 1
            if not self._first_frame.is_set():
                h, w = frame.shape[:2]
                logger.info("[CAMERA] ✓ First frame captured (%dx%d)", w, h)
                self._first_frame.set()

            self._frame_count += 1
            elapsed = time.time() - self._fps_timer
            if elapsed >= 1.0:
                self.fps = self._frame_count / elapsed
                self._frame_count = 0
                self._fps_timer = time.time()

    def read(self):
        """Latest frame (lock-free). Returns (frame_id, frame) or (0, None)."""
        frame = self._current_frame
        if frame is None:
            return 0, None
        return self._frame_id, frame

    def stop(self) -> None:
        """Stop the capture thread and release the device. Safe to call twice."""
        was_running = self.running
        self.running = False
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=3)
        self._thread = None
        self._release_cap()
        self._current_frame = None
        self._frame_id = 0
        if was_running:
            logger.info("[CAMERA] Stopped and released.")

    @property
    def is_opened(self) -> bool:
        return self.running and self.cap is not None and self.cap.isOpened()
