import random

import pytest

from flowstate.simulation import AttentionSimulator


class FixedRandom(random.Random):
    def __init__(self, value):
        super().__init__()
        self.value = value

    def random(self):
        return self.value


def test_starts_fully_focused():
    sim = AttentionSimulator()
    reading = sim.reading()
    assert reading.posture_score == 1.0
    assert not reading.is_distracted
    assert not reading.face_detected


def test_step_drifts_down():
    sim = AttentionSimulator(rng=FixedRandom(0.5))
    assert sim.step().posture_score == pytest.approx(0.925)


def test_drift_never_goes_below_zero():
    sim = AttentionSimulator(rng=FixedRandom(1.0))
    for _ in range(20):
        reading = sim.step()
    assert reading.posture_score == 0.0
    assert reading.is_distracted


def test_distracted_below_threshold():
    sim = AttentionSimulator(rng=FixedRandom(1.0))
    scores = [sim.step() for _ in range(3)]
    assert not scores[1].is_distracted  # 0.70
    assert scores[2].is_distracted      # 0.55


def test_reset_restores_full_score():
    sim = AttentionSimulator(rng=FixedRandom(1.0))
    sim.step()
    sim.reset()
    assert sim.score == 1.0
