"""
============================================================
 FLOWSTATE — Signal Fusion
 Producers (posture estimator or simulator, and the object
 detector or vision backend per source) each own their
 sub-reading. Derived fields are recomputed by fuse() on
 every write, never set directly.
============================================================
"""

import logging
from typing import Callable, Dict, Iterable, List

import config
from flowstate.geometry import clamp
from flowstate.models import EstimatorReading, FusionState, Mode, ObjectReading

logger = logging.getLogger(__name__)

NEUTRAL_ESTIMATE = EstimatorReading(posture_score=1.0, is_distracted=False)
NO_OBJECTS = ObjectReading()

SOURCE_DETECTOR = "detector"
SOURCE_VISION = "vision"


def merge_objects(readings: Iterable[ObjectReading]) -> ObjectReading:
    """Union of several object producers: any flag set wins, items are pooled."""
    phone = cluttered = False
    items = set()
    for reading in readings:
        phone = phone or reading.phone_detected
        cluttered = cluttered or reading.desk_cluttered
        items.update(reading.distracting_items)
    return ObjectReading(phone, cluttered, frozenset(items))


def fuse(mode: Mode, estimate: EstimatorReading, objects: ObjectReading) -> FusionState:
    """Combine the latest readings into one FusionState. Caps only ever lower the score."""
    score = clamp(estimate.posture_score)
    items = objects.distracting_items

    if mode == Mode.ENVIRONMENT:
        distracted = (objects.phone_detected or objects.desk_cluttered
                      or len(items) > config.ENVIRONMENT_ITEM_LIMIT)
    else:
        distracted = estimate.is_distracted or objects.phone_detected

    if objects.phone_detected:
        score = min(score, config.PHONE_SCORE_CAP)
    if estimate.looking_down and objects.desk_cluttered:
        score = min(score, config.LOOKING_DOWN_CLUTTER_CAP)

    if mode == Mode.ENVIRONMENT:
        if objects.desk_cluttered:
            score = min(score, config.ENVIRONMENT_CLUTTER_CAP)
        if items:
            lowered = max(config.ENVIRONMENT_ITEM_FLOOR,
                          score - len(items) * config.ENVIRONMENT_ITEM_PENALTY)
            score = min(score, lowered)

    return FusionState(
        posture_score=clamp(score),
        is_distracted=distracted,
        phone_detected=objects.phone_detected,
        desk_cluttered=objects.desk_cluttered,
        distracting_items=items,
        face_detected=estimate.face_detected,
        pose_detected=estimate.pose_detected,
        looking_down=estimate.looking_down,
        metrics=estimate.metrics if estimate.face_detected or estimate.pose_detected else None,
    )


class SignalFusion:
    """The one live FusionState of a session."""

    def __init__(self, mode: Mode = Mode.POSTURE) -> None:
        self.mode = Mode(mode)
        self._estimate = NEUTRAL_ESTIMATE
        self._objects: Dict[str, ObjectReading] = {}
        self.state = FusionState()
        self._listeners: List[Callable[[FusionState], None]] = []

    def subscribe(self, listener: Callable[[FusionState], None]) -> None:
        self._listeners.append(listener)

    # ── Producers: each writes only its own reading ─────────
    def update_estimate(self, reading: EstimatorReading) -> FusionState:
        self._estimate = reading
        return self._recompute()

    def update_objects(self, reading: ObjectReading,
                       source: str = SOURCE_DETECTOR) -> FusionState:
        self._objects[source] = reading
        return self._recompute()

    # ── Lifecycle ───────────────────────────────────────────
    def set_mode(self, mode: Mode) -> FusionState:
        self.mode = Mode(mode)
        logger.info("[FUSION] Mode -> %s", self.mode.value)
        return self.reset()

    def reset(self) -> FusionState:
        """Back to neutral defaults (score 1.0, not distracted)."""
        self._estimate = NEUTRAL_ESTIMATE
        self._objects = {}
        return self._recompute()

    def _recompute(self) -> FusionState:
        objects = merge_objects(self._objects.values()) if self._objects else NO_OBJECTS
        self.state = fuse(self.mode, self._estimate, objects)
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:
                logger.exception("[FUSION] Listener failed")
        return self.state
