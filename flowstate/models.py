"""
============================================================
 FLOWSTATE — Shared Data Model
 Small immutable records passed between detectors, fusion,
 the session engine and the web layer.
============================================================
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import FrozenSet, Optional, Tuple


class HeadPosition(str, Enum):
    CENTERED = "centered"
    LEFT = "left"
    RIGHT = "right"


class ShoulderAlignment(str, Enum):
    GOOD = "good"
    TILTED = "tilted"
    HUNCHED = "hunched"


class FlowLevel(str, Enum):
    BUILDING = "building"
    FLOWING = "flowing"
    DEEP = "deep"


class Mode(str, Enum):
    POSTURE = "posture"
    ENVIRONMENT = "environment"


class StudyGoal(str, Enum):
    READING = "reading"
    PROBLEM_SOLVING = "problem-solving"
    MEMORIZATION = "memorization"


class EnergyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class PostureMetrics:
    head_tilt_deg: float = 0.0
    shoulder_tilt_deg: float = 0.0
    head_position: HeadPosition = HeadPosition.CENTERED
    shoulder_alignment: ShoulderAlignment = ShoulderAlignment.GOOD

    def to_dict(self) -> dict:
        return {
            "head_tilt_deg": round(self.head_tilt_deg, 1),
            "shoulder_tilt_deg": round(self.shoulder_tilt_deg, 1),
            "head_position": self.head_position.value,
            "shoulder_alignment": self.shoulder_alignment.value,
        }


@dataclass(frozen=True)
class EstimatorReading:
    """One processed frame from the posture estimator (or the vision backend)."""
    posture_score: float
    is_distracted: bool
    face_detected: bool = False
    pose_detected: bool = False
    looking_down: bool = False
    metrics: PostureMetrics = field(default_factory=PostureMetrics)


@dataclass(frozen=True)
class Detection:
    label: str
    score: float
    box: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)


@dataclass(frozen=True)
class ObjectReading:
    phone_detected: bool = False
    desk_cluttered: bool = False
    distracting_items: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class FusionState:
    posture_score: float = 1.0
    is_distracted: bool = False
    phone_detected: bool = False
    desk_cluttered: bool = False
    distracting_items: FrozenSet[str] = frozenset()
    face_detected: bool = False
    pose_detected: bool = False
    looking_down: bool = False
    metrics: Optional[PostureMetrics] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["posture_score"] = round(self.posture_score, 3)
        data["distracting_items"] = sorted(self.distracting_items)
        data["metrics"] = self.metrics.to_dict() if self.metrics else None
        return data
