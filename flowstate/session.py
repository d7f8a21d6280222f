"""
============================================================
 FLOWSTATE — Session State & Timer
 Flow level, focus-score history and the 1 Hz session tick.
============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import config
from flowstate.models import EnergyLevel, FlowLevel, StudyGoal

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════
#  PURE HELPERS
# ═════════════════════════════════════════════════════════════

def flow_level_for(elapsed_sec: int) -> FlowLevel:
    """Time-based only: building -> flowing (120s) -> deep (300s)."""
    if elapsed_sec >= config.FLOW_DEEP_AT:
        return FlowLevel.DEEP
    if elapsed_sec >= config.FLOW_FLOWING_AT:
        return FlowLevel.FLOWING
    return FlowLevel.BUILDING


def harsh_average(samples: Sequence[float],
                  exponent: float = config.FOCUS_SCORE_EXPONENT) -> float:
    """
    Mean of sample**exponent. With exponent > 1 a single low sample
    pulls the result down harder than a plain mean would.
    """
    if not samples:
        return 0.0
    return sum(max(0.0, min(1.0, s)) ** exponent for s in samples) / len(samples)


def focus_rating(average: float) -> str:
    if average > 0.7:
        return "excellent"
    if average > 0.5:
        return "good"
    if average > 0.3:
        return "moderate"
    return "needs improvement"


def display_score(score: float) -> int:
    """0-1 score as the 1-10 number shown in the UI."""
    return round(score * 10)


def format_clock(total_seconds: int) -> str:
    mins, secs = divmod(max(0, int(total_seconds)), 60)
    return f"{mins:02d}:{secs:02d}"


def human_duration(total_seconds: int) -> str:
    mins, secs = divmod(max(0, int(total_seconds)), 60)
    if mins == 0:
        return f"{secs} seconds"
    return (f"{mins} minute{'s' if mins != 1 else ''} and "
            f"{secs} second{'s' if secs != 1 else ''}")


# ═════════════════════════════════════════════════════════════
#  SESSION STATE
# ═════════════════════════════════════════════════════════════

@dataclass
class SessionState:
    study_goal: StudyGoal
    energy_level: EnergyLevel
    planned_duration_sec: int = 0          # 0 = unlimited count-up
    elapsed_sec: int = 0
    focus_samples: List[float] = field(default_factory=list)
    complete: bool = False
    ended: bool = False

    @property
    def is_unlimited(self) -> bool:
        return self.planned_duration_sec == 0

    @property
    def seconds_remaining(self) -> int:
        if self.is_unlimited:
            return 0
        return max(0, self.planned_duration_sec - self.elapsed_sec)

    @property
    def flow_level(self) -> FlowLevel:
        return flow_level_for(self.elapsed_sec)

    @property
    def average_focus_score(self) -> float:
        return harsh_average(self.focus_samples)

    @property
    def progress_percent(self) -> float:
        if self.is_unlimited:
            return 0.0
        return min(100.0, self.elapsed_sec / self.planned_duration_sec * 100)

    @property
    def active(self) -> bool:
        return not (self.complete or self.ended)

    def tick(self, focus_score: float) -> bool:
        """Advance one second. Returns True exactly once, when a countdown reaches 0."""
        if not self.active:
            return False
        self.elapsed_sec += 1
        self.focus_samples.append(focus_score)
        if not self.is_unlimited and self.elapsed_sec >= self.planned_duration_sec:
            self.complete = True
            return True
        return False

    def to_dict(self) -> dict:
        return {
            "study_goal": self.study_goal.value,
            "energy_level": self.energy_level.value,
            "planned_duration_sec": self.planned_duration_sec,
            "elapsed_sec": self.elapsed_sec,
            "seconds_remaining": self.seconds_remaining,
            "is_unlimited": self.is_unlimited,
            "clock": format_clock(self.elapsed_sec if self.is_unlimited else self.seconds_remaining),
            "progress_percent": round(self.progress_percent, 1),
            "flow_level": self.flow_level.value,
            "average_focus_score": round(self.average_focus_score, 3),
            "session_complete": self.complete,
        }


class SessionContext:
    """Explicit holder of the one current session (create / reset lifecycle)."""

    def __init__(self) -> None:
        self.current: Optional[SessionState] = None

    def create(self, study_goal, energy_level, duration_minutes: int = 0) -> SessionState:
        self.current = SessionState(
            study_goal=StudyGoal(study_goal),
            energy_level=EnergyLevel(energy_level),
            planned_duration_sec=int(duration_minutes) * 60,
        )
        return self.current

    def reset(self) -> None:
        self.current = None


# ═════════════════════════════════════════════════════════════
#  TIMER
# ═════════════════════════════════════════════════════════════

class SessionTimer:
    """Single repeating 1s tick. start() never stacks a second task."""

    def __init__(self, on_tick: Callable[[], bool], interval: float = 1.0) -> None:
        self._on_tick = on_tick
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                keep_going = self._on_tick()
            except Exception:
                logger.exception("[SESSION] Tick failed")
                keep_going = True
            if keep_going is False:
                break

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:  # no running loop
            current = None
        if task is not current:
            task.cancel()
