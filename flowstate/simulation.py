"""
============================================================
 FLOWSTATE — Simulated Attention
 Zero-sensor fallback: the score slowly drifts downward so
 the UI always has a plausible signal.
============================================================
"""

import random

import config
from flowstate.geometry import clamp, is_distracted
from flowstate.models import EstimatorReading


class AttentionSimulator:

    def __init__(self, rng=None):
        self._rng = rng or random.Random()
        self.score = 1.0

    def reset(self) -> None:
        self.score = 1.0

    def step(self) -> EstimatorReading:
        """Advance one tick (called every SIMULATION_INTERVAL seconds)."""
        self.score = clamp(self.score - self._rng.random() * config.SIMULATION_MAX_DRIFT)
        return self.reading()

    def reading(self) -> EstimatorReading:
        return EstimatorReading(
            posture_score=self.score,
            is_distracted=is_distracted(self.score),
        )
