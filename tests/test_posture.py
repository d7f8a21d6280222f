from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from conftest import make_face, make_pose
from flowstate import posture
from flowstate.posture import PostureEstimator


@pytest.fixture
def frame():
    return np.zeros((48, 64, 3), dtype=np.uint8)


@pytest.fixture
def estimator(monkeypatch):
    monkeypatch.setattr(posture.mp, "Image", lambda **kwargs: kwargs)
    est = PostureEstimator("face.task", "pose.task")
    est._face = MagicMock()
    est._face.detect_for_video.return_value = SimpleNamespace(face_landmarks=[make_face()])
    est._pose = MagicMock()
    est._pose.detect_for_video.return_value = SimpleNamespace(pose_landmarks=[make_pose()])
    return est


class TestProcess:

    def test_not_loaded_returns_none(self, frame):
        assert PostureEstimator("a", "b").process(frame, 0) is None

    def test_scores_both_landmark_sets(self, estimator, frame):
        reading = estimator.process(frame, 10)
        assert reading.face_detected
        assert reading.pose_detected
        assert reading.posture_score == pytest.approx(1.0)

    def test_empty_results_fall_back_to_neutral(self, estimator, frame):
        estimator._face.detect_for_video.return_value = SimpleNamespace(face_landmarks=[])
        estimator._pose.detect_for_video.return_value = SimpleNamespace(pose_landmarks=[])
        reading = estimator.process(frame, 10)
        assert not reading.face_detected
        assert reading.posture_score == 0.5

    def test_pose_only(self, estimator, frame):
        estimator._face = None
        reading = estimator.process(frame, 10)
        assert not reading.face_detected
        assert reading.pose_detected

    def test_timestamps_forced_monotonic(self, estimator, frame):
        estimator.process(frame, 10)
        estimator.process(frame, 5)
        last_ts = estimator._face.detect_for_video.call_args[0][1]
        assert last_ts == 11


class TestClose:

    def test_close_releases_everything(self, estimator):
        face, pose = estimator._face, estimator._pose
        estimator.close()
        face.close.assert_called_once()
        pose.close.assert_called_once()
        assert not estimator.loaded

    def test_close_is_idempotent(self, estimator):
        estimator.close()
        estimator.close()
        assert not estimator.loaded

    def test_failing_close_does_not_block_the_other(self, estimator):
        pose = estimator._pose
        estimator._face.close.side_effect = RuntimeError("boom")
        estimator.close()
        pose.close.assert_called_once()
        assert not estimator.loaded

    def test_process_after_close_is_noop(self, estimator, frame):
        estimator.close()
        assert estimator.process(frame, 20) is None


def test_load_failure_reports_false(monkeypatch):
    vision = MagicMock()
    vision.FaceLandmarker.create_from_options.side_effect = RuntimeError("no model")
    vision.PoseLandmarker.create_from_options.side_effect = RuntimeError("no model")
    monkeypatch.setattr(posture.mp, "tasks", SimpleNamespace(BaseOptions=MagicMock(), vision=vision))
    est = PostureEstimator("missing.task", "missing.task")
    assert est.load() is False
    assert not est.loaded
