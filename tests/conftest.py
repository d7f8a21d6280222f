import asyncio
import os
import sys
from types import SimpleNamespace

import numpy as np
import pytest

# Add project root to sys.path so tests can import config / flowstate
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hypothesis import settings

from flowstate.llm import ServiceUnavailable
from flowstate.models import EstimatorReading, ObjectReading

# CI profile: more examples for thorough testing
settings.register_profile("ci", max_examples=200)
# Dev profile: fewer examples for faster iteration
settings.register_profile("dev", max_examples=100)
settings.load_profile("dev")


# ── Landmark builders ───────────────────────────────────────
def lm(x, y, z=0.0, visibility=0.99):
    return SimpleNamespace(x=x, y=y, z=z, visibility=visibility)


def make_face(nose=(0.5, 0.5), left_eye=(0.4, 0.4), right_eye=(0.6, 0.4),
              forehead=(0.5, 0.3), chin=(0.5, 0.7)):
    """478 face-mesh points; only the ones the geometry reads are meaningful."""
    face = [lm(0.5, 0.5) for _ in range(478)]
    face[1] = lm(*nose)
    face[10] = lm(*forehead)
    face[152] = lm(*chin)
    face[33] = lm(*left_eye)
    face[263] = lm(*right_eye)
    return face


def make_pose(nose=(0.5, 0.35), left_ear=(0.45, 0.35), right_ear=(0.55, 0.35),
              left_shoulder=(0.35, 0.55), right_shoulder=(0.65, 0.55),
              shoulder_vis=0.9, ear_vis=0.9):
    """33 pose points, upright and centered by default."""
    pose = [lm(0.5, 0.5, visibility=0.0) for _ in range(33)]
    pose[0] = lm(*nose)
    pose[7] = lm(*left_ear, visibility=ear_vis)
    pose[8] = lm(*right_ear, visibility=ear_vis)
    pose[11] = lm(*left_shoulder, visibility=shoulder_vis)
    pose[12] = lm(*right_shoulder, visibility=shoulder_vis)
    return pose


# ── Fakes for the engine's collaborators ────────────────────
class FakeCamera:
    def __init__(self, ok=True):
        self.ok = ok
        self.frame = np.zeros((480, 640, 3), dtype=np.uint8)
        self.frame_id = 0
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0

    def start(self, timeout=None):
        self.start_calls += 1
        self.running = self.ok
        return self.ok

    def read(self):
        if not self.running:
            return 0, None
        self.frame_id += 1
        return self.frame_id, self.frame

    def stop(self):
        self.stop_calls += 1
        self.running = False


class FakeEstimator:
    def __init__(self, reading=None, load_ok=True):
        self.reading = reading or EstimatorReading(
            posture_score=0.3, is_distracted=True, face_detected=True, pose_detected=True)
        self.load_ok = load_ok
        self.loaded = False
        self.load_calls = 0
        self.close_calls = 0
        self.process_calls = 0

    def load(self):
        self.load_calls += 1
        self.loaded = self.load_ok
        return self.load_ok

    def process(self, frame, timestamp_ms):
        if not self.loaded:
            return None
        self.process_calls += 1
        return self.reading

    def close(self):
        self.close_calls += 1
        self.loaded = False


class FakeDetector:
    def __init__(self, reading=None, error=None, load_ok=True):
        self.reading = reading or ObjectReading()
        self.error = error
        self.load_ok = load_ok
        self.loaded = False
        self.sample_calls = 0
        self.close_calls = 0

    def load(self):
        self.loaded = self.load_ok
        return self.load_ok

    def sample(self, frame):
        self.sample_calls += 1
        if self.error is not None:
            raise self.error
        return self.reading

    def close(self):
        self.close_calls += 1
        self.loaded = False


class FakeLLM:
    """Scripted stand-in for LLMClient.

    script: list of (delay_seconds, text_or_exception) consumed per call;
    once exhausted, `default` is returned.
    """

    def __init__(self, default="Keep going, you're doing well.", script=None,
                 chunks=None, stream_error=None):
        self.default = default
        self.script = list(script or [])
        self.chunks = chunks if chunks is not None else ["Try a ", "short break."]
        self.stream_error = stream_error
        self.calls = []
        self.stream_calls = []
        self.closed = False

    @property
    def online(self):
        return True

    async def complete(self, model, messages, max_tokens=100, temperature=0.7):
        self.calls.append({"model": model, "messages": messages})
        delay, outcome = self.script.pop(0) if self.script else (0, self.default)
        if delay:
            await asyncio.sleep(delay)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def stream(self, model, messages, max_tokens=400, temperature=0.7):
        self.stream_calls.append({"model": model, "messages": messages})
        for chunk in self.chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error

    async def close(self):
        self.closed = True

    def calls_for(self, model):
        return [c for c in self.calls if c["model"] == model]


def unavailable(reason="rate limited", status=429):
    return ServiceUnavailable(reason, status)


@pytest.fixture
def fake_llm():
    return FakeLLM()
