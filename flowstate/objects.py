"""
============================================================
 FLOWSTATE — Object / Distraction Detector
 YOLOv8 on a downscaled frame, folded into phone / clutter
 flags by substring matching against fixed label lists.
============================================================
"""

import logging
from typing import Iterable, List

import cv2
import numpy as np

import config
from flowstate.models import Detection, ObjectReading

logger = logging.getLogger(__name__)


def _matches(label: str, vocabulary: Iterable[str]) -> bool:
    return any(word in label for word in vocabulary)


def classify_detections(detections: Iterable[Detection],
                        threshold: float = config.OBJECT_CONFIDENCE) -> ObjectReading:
    """Fold one poll's detections into phone / clutter / item flags."""
    labels = {d.label.lower() for d in detections if d.score >= threshold}

    phone = any(_matches(label, config.PHONE_LABELS) for label in labels)
    clutter = {label for label in labels if _matches(label, config.CLUTTER_LABELS)}
    strong_food = any(_matches(label, config.STRONG_FOOD_LABELS) for label in labels)
    items = frozenset(label for label in labels if _matches(label, config.DISTRACTING_LABELS))

    return ObjectReading(
        phone_detected=phone,
        desk_cluttered=len(clutter) >= 2 or strong_food,
        distracting_items=items,
    )


def downscale(frame: np.ndarray,
              max_w: int = config.OBJECT_FRAME_MAX_WIDTH,
              max_h: int = config.OBJECT_FRAME_MAX_HEIGHT) -> np.ndarray:
    h, w = frame.shape[:2]
    scale = min(max_w / w, max_h / h, 1.0)
    if scale >= 1.0:
        return frame
    size = (max(1, int(w * scale)), max(1, int(h * scale)))
    return cv2.resize(frame, size, interpolation=cv2.INTER_AREA)


class ObjectDetector:
    """Thin wrapper over an ultralytics YOLO model."""

    def __init__(self, model_path: str = config.OBJECT_MODEL_PATH) -> None:
        self.model_path = model_path
        self._yolo = None

    @property
    def loaded(self) -> bool:
        return self._yolo is not None

    def load(self) -> bool:
        if self._yolo is not None:
            return True
        try:
            from ultralytics import YOLO
            logger.info("[OBJECTS] Loading YOLOv8 model...")
            self._yolo = YOLO(self.model_path)
            logger.info("[OBJECTS] YOLOv8 loaded ✓")
        except Exception as e:
            logger.warning("[OBJECTS] YOLO unavailable: %s", e)
            self._yolo = None
        return self._yolo is not None

    def detect(self, frame: np.ndarray) -> List[Detection]:
        """Raw detections above threshold. Raises on inference failure."""
        model = self._yolo
        if model is None:
            raise RuntimeError("object model not loaded")
        results = model(
            downscale(frame), conf=config.OBJECT_CONFIDENCE,
            imgsz=config.OBJECT_IMAGE_SIZE, verbose=False,
        )
        detections: List[Detection] = []
        for r in results:
            for box in r.boxes:
                cls_id = int(box.cls[0])
                x1, y1, x2, y2 = box.xyxy[0].tolist()
                detections.append(Detection(
                    label=str(r.names[cls_id]),
                    score=float(box.conf[0]),
                    box=(x1, y1, x2, y2),
                ))
        return detections

    def sample(self, frame: np.ndarray) -> ObjectReading:
        return classify_detections(self.detect(frame))

    def close(self) -> None:
        if self._yolo is not None:
            self._yolo = None
            logger.info("[OBJECTS] Released model.")
