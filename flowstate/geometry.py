"""
============================================================
 FLOWSTATE — Landmark Geometry
 Pure functions turning normalized face / pose landmarks
 (x, y in [0,1], y grows downward) into posture scores.
 No MediaPipe import here: anything with .x/.y works.
============================================================
"""

import math
from typing import NamedTuple, Optional, Sequence

import config
from flowstate.models import (
    EstimatorReading,
    HeadPosition,
    PostureMetrics,
    ShoulderAlignment,
)

# ── Face mesh landmark indices (468/478-point topology) ─────
NOSE_TIP = 1
FOREHEAD = 10
CHIN = 152
LEFT_EYE_OUTER = 33
RIGHT_EYE_OUTER = 263

# ── Pose landmark indices (33-point topology) ───────────────
POSE_NOSE = 0
LEFT_EAR = 7
RIGHT_EAR = 8
LEFT_SHOULDER = 11
RIGHT_SHOULDER = 12


class HeadTilt(NamedTuple):
    degrees: float
    position: HeadPosition
    looking_down: bool


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def _visibility(landmark) -> float:
    vis = getattr(landmark, "visibility", None)
    return 0.0 if vis is None else float(vis)


def tilt_to_posture_score(degrees: float,
                          max_degrees: float = config.HEAD_TILT_MAX_DEGREES) -> float:
    """0 deg -> 1.0, max_degrees (or more) -> 0.0."""
    return clamp(1.0 - degrees / max_degrees)


# ═════════════════════════════════════════════════════════════
#  HEAD (face landmarks)
# ═════════════════════════════════════════════════════════════

def head_tilt(face: Sequence) -> HeadTilt:
    """
    Blend three cues into one approximate tilt angle:
      - vertical: nose tip vs the forehead/chin midpoint
      - horizontal: nose tip vs the midpoint of the outer eye corners
      - roll: angle of the eye line
    """
    nose = face[NOSE_TIP]
    forehead = face[FOREHEAD]
    chin = face[CHIN]
    left_eye = face[LEFT_EYE_OUTER]
    right_eye = face[RIGHT_EYE_OUTER]

    mid_y = (forehead.y + chin.y) / 2
    vertical = abs(nose.y - mid_y)

    eye_mid_x = (left_eye.x + right_eye.x) / 2
    dx = nose.x - eye_mid_x
    horizontal = abs(dx)

    roll = abs(math.degrees(math.atan2(right_eye.y - left_eye.y,
                                       abs(right_eye.x - left_eye.x))))

    offset = (config.HEAD_VERTICAL_WEIGHT * vertical
              + config.HEAD_HORIZONTAL_WEIGHT * horizontal)
    degrees = offset * config.OFFSET_TO_DEGREES + config.HEAD_ROLL_WEIGHT * roll
    degrees = clamp(degrees, 0.0, config.HEAD_TILT_MAX_DEGREES)

    if dx > config.HEAD_CENTER_TOLERANCE:
        position = HeadPosition.RIGHT
    elif dx < -config.HEAD_CENTER_TOLERANCE:
        position = HeadPosition.LEFT
    else:
        position = HeadPosition.CENTERED

    face_height = chin.y - forehead.y
    looking_down = (
        face_height > 0
        and (nose.y - mid_y) / face_height > config.LOOKING_DOWN_RATIO
    )
    return HeadTilt(degrees, position, looking_down)


# ═════════════════════════════════════════════════════════════
#  BODY (pose landmarks)
# ═════════════════════════════════════════════════════════════

def shoulders_visible(pose: Sequence) -> bool:
    if len(pose) <= RIGHT_SHOULDER:
        return False
    return (_visibility(pose[LEFT_SHOULDER]) > config.SHOULDER_VISIBILITY_MIN
            and _visibility(pose[RIGHT_SHOULDER]) > config.SHOULDER_VISIBILITY_MIN)


def shoulder_tilt(pose: Sequence) -> Optional[float]:
    """Shoulder line angle in degrees, or None when a shoulder is not visible."""
    if not shoulders_visible(pose):
        return None
    ls, rs = pose[LEFT_SHOULDER], pose[RIGHT_SHOULDER]
    degrees = math.degrees(math.atan2(abs(ls.y - rs.y), abs(ls.x - rs.x)))
    return clamp(degrees, 0.0, config.SHOULDER_TILT_MAX_DEGREES)


def _forward_head_offset(pose: Sequence) -> Optional[float]:
    left_ear, right_ear = pose[LEFT_EAR], pose[RIGHT_EAR]
    if (_visibility(left_ear) <= config.SHOULDER_VISIBILITY_MIN
            or _visibility(right_ear) <= config.SHOULDER_VISIBILITY_MIN):
        return None
    ear_mid_x = (left_ear.x + right_ear.x) / 2
    shoulder_mid_x = (pose[LEFT_SHOULDER].x + pose[RIGHT_SHOULDER].x) / 2
    return abs(ear_mid_x - shoulder_mid_x)


def whole_pose_score(pose: Sequence) -> float:
    """Baseline 1.0 minus asymmetry, forward-head, off-center and slouch penalties."""
    ls, rs = pose[LEFT_SHOULDER], pose[RIGHT_SHOULDER]
    score = 1.0

    score -= abs(ls.y - rs.y) * config.SHOULDER_ASYMMETRY_GAIN

    forward = _forward_head_offset(pose)
    if forward is not None:
        score -= forward * config.FORWARD_HEAD_GAIN

    shoulder_mid_x = (ls.x + rs.x) / 2
    if abs(shoulder_mid_x - 0.5) > config.OFF_CENTER_THRESHOLD:
        score -= config.OFF_CENTER_PENALTY

    if pose[POSE_NOSE].y > config.SLOUCH_LINE:
        score -= config.SLOUCH_PENALTY

    return clamp(score)


def shoulder_alignment(pose: Sequence, tilt_degrees: float) -> ShoulderAlignment:
    forward = _forward_head_offset(pose)
    if pose[POSE_NOSE].y > config.SLOUCH_LINE or (
            forward is not None and forward > config.HUNCHED_HEAD_OFFSET):
        return ShoulderAlignment.HUNCHED
    if tilt_degrees > config.SHOULDER_TILTED_DEGREES:
        return ShoulderAlignment.TILTED
    return ShoulderAlignment.GOOD


# ═════════════════════════════════════════════════════════════
#  FUSION OF FACE + POSE
# ═════════════════════════════════════════════════════════════

def combine_scores(face_score: Optional[float], pose_score: Optional[float]) -> float:
    if face_score is not None and pose_score is not None:
        return clamp(config.FACE_WEIGHT * face_score + config.POSE_WEIGHT * pose_score)
    if face_score is not None:
        return clamp(face_score)
    if pose_score is not None:
        return clamp(pose_score)
    return config.NEUTRAL_POSTURE_SCORE


def is_distracted(score: float) -> bool:
    return score < config.DISTRACTION_THRESHOLD


def analyze_landmarks(face: Optional[Sequence], pose: Optional[Sequence]) -> EstimatorReading:
    """Score one frame's worth of landmarks. Either list may be None/empty."""
    face_score = None
    head = HeadTilt(0.0, HeadPosition.CENTERED, False)
    if face and len(face) > RIGHT_EYE_OUTER:
        head = head_tilt(face)
        face_score = tilt_to_posture_score(head.degrees)

    pose_score = None
    tilt_deg = 0.0
    alignment = ShoulderAlignment.GOOD
    if pose and shoulders_visible(pose):
        tilt_deg = shoulder_tilt(pose)
        tilt_score = tilt_to_posture_score(tilt_deg, config.SHOULDER_TILT_MAX_DEGREES)
        pose_score = (tilt_score + whole_pose_score(pose)) / 2
        alignment = shoulder_alignment(pose, tilt_deg)

    score = combine_scores(face_score, pose_score)
    return EstimatorReading(
        posture_score=score,
        is_distracted=is_distracted(score),
        face_detected=face_score is not None,
        pose_detected=pose_score is not None,
        looking_down=head.looking_down,
        metrics=PostureMetrics(
            head_tilt_deg=head.degrees,
            shoulder_tilt_deg=tilt_deg,
            head_position=head.position,
            shoulder_alignment=alignment,
        ),
    )
