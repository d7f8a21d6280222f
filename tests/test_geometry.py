"""Landmark geometry: tilt scores, whole-pose heuristic and face/pose fusion."""

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

import config
from conftest import make_face, make_pose
from flowstate.geometry import (
    analyze_landmarks,
    combine_scores,
    head_tilt,
    shoulder_alignment,
    shoulder_tilt,
    tilt_to_posture_score,
    whole_pose_score,
)
from flowstate.models import HeadPosition, ShoulderAlignment


class TestTiltToPostureScore:

    def test_zero_degrees_is_perfect(self):
        assert tilt_to_posture_score(0) == 1.0

    def test_max_degrees_is_zero(self):
        assert tilt_to_posture_score(30) == 0.0

    def test_beyond_max_is_clamped(self):
        assert tilt_to_posture_score(45) == 0.0

    @given(st.floats(min_value=0, max_value=30, allow_nan=False))
    def test_linear_inside_range(self, degrees):
        assert tilt_to_posture_score(degrees) == pytest.approx(1 - degrees / 30)

    @given(st.floats(min_value=-1000, max_value=1000, allow_nan=False))
    def test_always_in_unit_interval(self, degrees):
        assert 0.0 <= tilt_to_posture_score(degrees) <= 1.0

    def test_custom_maximum_for_shoulders(self):
        assert tilt_to_posture_score(7.5, 15) == pytest.approx(0.5)


class TestHeadTilt:

    def test_neutral_face_has_no_tilt(self):
        tilt = head_tilt(make_face())
        assert tilt.degrees == pytest.approx(0.0)
        assert tilt.position == HeadPosition.CENTERED
        assert not tilt.looking_down

    def test_nose_drop_adds_vertical_tilt_and_looking_down(self):
        tilt = head_tilt(make_face(nose=(0.5, 0.6)))
        # 0.5 weight * 0.1 offset * 180
        assert tilt.degrees == pytest.approx(9.0)
        assert tilt.looking_down

    def test_horizontal_offset_sets_position(self):
        right = head_tilt(make_face(nose=(0.55, 0.5)))
        left = head_tilt(make_face(nose=(0.45, 0.5)))
        assert right.position == HeadPosition.RIGHT
        assert left.position == HeadPosition.LEFT
        assert right.degrees == pytest.approx(0.3 * 0.05 * 180)

    def test_eye_line_roll_contributes(self):
        tilt = head_tilt(make_face(left_eye=(0.4, 0.4), right_eye=(0.6, 0.5)))
        assert tilt.degrees == pytest.approx(0.2 * math.degrees(math.atan2(0.1, 0.2)))

    def test_extreme_offset_is_clamped_to_max(self):
        tilt = head_tilt(make_face(nose=(0.5, 0.9)))
        assert tilt.degrees == config.HEAD_TILT_MAX_DEGREES


class TestShoulders:

    def test_level_shoulders(self):
        assert shoulder_tilt(make_pose()) == pytest.approx(0.0)

    def test_uneven_shoulders(self):
        pose = make_pose(left_shoulder=(0.35, 0.50), right_shoulder=(0.65, 0.55))
        assert shoulder_tilt(pose) == pytest.approx(math.degrees(math.atan2(0.05, 0.3)))

    def test_tilt_is_clamped(self):
        pose = make_pose(left_shoulder=(0.45, 0.3), right_shoulder=(0.55, 0.7))
        assert shoulder_tilt(pose) == config.SHOULDER_TILT_MAX_DEGREES

    def test_low_visibility_means_no_reading(self):
        assert shoulder_tilt(make_pose(shoulder_vis=0.4)) is None

    def test_visibility_must_exceed_half(self):
        assert shoulder_tilt(make_pose(shoulder_vis=0.5)) is None


class TestWholePoseScore:

    def test_upright_centered_pose_is_perfect(self):
        assert whole_pose_score(make_pose()) == pytest.approx(1.0)

    def test_shoulder_asymmetry_penalty(self):
        pose = make_pose(left_shoulder=(0.35, 0.50), right_shoulder=(0.65, 0.55))
        assert whole_pose_score(pose) == pytest.approx(1.0 - 0.05 * config.SHOULDER_ASYMMETRY_GAIN)

    def test_forward_head_penalty(self):
        pose = make_pose(left_ear=(0.55, 0.35), right_ear=(0.65, 0.35))
        assert whole_pose_score(pose) == pytest.approx(1.0 - 0.1 * config.FORWARD_HEAD_GAIN)

    def test_forward_head_ignored_when_ears_hidden(self):
        pose = make_pose(left_ear=(0.55, 0.35), right_ear=(0.65, 0.35), ear_vis=0.1)
        assert whole_pose_score(pose) == pytest.approx(1.0)

    def test_off_center_penalty(self):
        pose = make_pose(left_shoulder=(0.75, 0.55), right_shoulder=(0.95, 0.55),
                         left_ear=(0.8, 0.35), right_ear=(0.9, 0.35))
        assert whole_pose_score(pose) == pytest.approx(1.0 - config.OFF_CENTER_PENALTY)

    def test_slouch_penalty(self):
        pose = make_pose(nose=(0.5, 0.7))
        assert whole_pose_score(pose) == pytest.approx(1.0 - config.SLOUCH_PENALTY)

    def test_never_below_zero(self):
        pose = make_pose(nose=(0.5, 0.9), left_shoulder=(0.80, 0.2), right_shoulder=(0.99, 0.9),
                         left_ear=(0.1, 0.3), right_ear=(0.2, 0.3))
        assert whole_pose_score(pose) == 0.0


class TestShoulderAlignment:

    def test_good(self):
        assert shoulder_alignment(make_pose(), 0.0) == ShoulderAlignment.GOOD

    def test_tilted(self):
        assert shoulder_alignment(make_pose(), 9.0) == ShoulderAlignment.TILTED

    def test_slouch_is_hunched(self):
        assert shoulder_alignment(make_pose(nose=(0.5, 0.7)), 0.0) == ShoulderAlignment.HUNCHED


class TestCombineScores:

    def test_weighted_when_both_present(self):
        assert combine_scores(1.0, 0.5) == pytest.approx(0.4 * 1.0 + 0.6 * 0.5)

    def test_face_only(self):
        assert combine_scores(0.3, None) == pytest.approx(0.3)

    def test_pose_only(self):
        assert combine_scores(None, 0.8) == pytest.approx(0.8)

    def test_neither_is_neutral(self):
        assert combine_scores(None, None) == 0.5


class TestAnalyzeLandmarks:

    def test_good_posture_not_distracted(self):
        reading = analyze_landmarks(make_face(), make_pose())
        assert reading.face_detected and reading.pose_detected
        assert reading.posture_score == pytest.approx(1.0)
        assert not reading.is_distracted

    def test_nothing_detected(self):
        reading = analyze_landmarks(None, None)
        assert not reading.face_detected
        assert not reading.pose_detected
        assert reading.posture_score == 0.5

    def test_hidden_shoulders_use_face_only(self):
        reading = analyze_landmarks(make_face(nose=(0.5, 0.6)), make_pose(shoulder_vis=0.2))
        assert reading.face_detected
        assert not reading.pose_detected
        assert reading.posture_score == pytest.approx(0.7)
        assert reading.looking_down

    def test_threshold_decides_distraction(self):
        # 15 deg face tilt -> 0.5 face score, no pose
        reading = analyze_landmarks(make_face(nose=(0.5, 0.5 + 15 / 90)), None)
        assert reading.posture_score == pytest.approx(0.5)
        assert reading.is_distracted

    def test_metrics_are_filled(self):
        pose = make_pose(left_shoulder=(0.35, 0.50), right_shoulder=(0.65, 0.55))
        reading = analyze_landmarks(make_face(nose=(0.55, 0.5)), pose)
        assert reading.metrics.head_position == HeadPosition.RIGHT
        assert reading.metrics.shoulder_alignment == ShoulderAlignment.TILTED
        assert reading.metrics.shoulder_tilt_deg > 5
