"""
============================================================
 FLOWSTATE — Session Engine
 Owns the camera, both detectors, the simulation fallback,
 signal fusion, the nudge generator and the session timer.

 Periodic activities (all on one asyncio loop):
   A. session timer        — 1s
   B. posture estimation   — ~100ms, only on a new frame
   C. object detection     — 5s, next run scheduled after
                             the previous one finishes
   S. simulation           — 4s, while the camera is off or the
                             posture models failed to load
============================================================
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import config
from flowstate import database
from flowstate.assistant import StudyCompanion
from flowstate.camera import Camera
from flowstate.fusion import SOURCE_VISION, SignalFusion
from flowstate.insights import request_insight
from flowstate.llm import LLMClient
from flowstate.models import FusionState, Mode, ObjectReading
from flowstate.nudges import NudgeGenerator
from flowstate.objects import ObjectDetector
from flowstate.posture import PostureEstimator
from flowstate.session import (
    SessionContext,
    SessionTimer,
    display_score,
    focus_rating,
    human_duration,
)
from flowstate.simulation import AttentionSimulator
from flowstate.vision import VisionAnalyzer

logger = logging.getLogger(__name__)

BACKEND_LANDMARKS = "landmarks"
BACKEND_VISION = "vision"


class NoActiveSession(Exception):
    pass


class SessionEngine:
    """One engine per process; one session at a time."""

    def __init__(self, camera=None, estimator=None, detector=None, llm=None,
                 vision=None, emit: Optional[Callable[[str, dict], None]] = None,
                 rng=None, posture_backend: str = config.POSTURE_BACKEND) -> None:
        self.camera = camera if camera is not None else Camera()
        self.estimator = estimator if estimator is not None else PostureEstimator()
        self.detector = detector if detector is not None else ObjectDetector()
        self.llm = llm if llm is not None else LLMClient()
        self.vision = vision if vision is not None else VisionAnalyzer(self.llm)
        self.posture_backend = posture_backend
        self._emit = emit

        self.context = SessionContext()
        self.simulator = AttentionSimulator(rng)
        self.fusion = SignalFusion()
        self.fusion.subscribe(self._on_fusion)
        self.nudges = NudgeGenerator(self.llm, on_update=self._on_nudge)
        self.companion = StudyCompanion(self.llm)
        self.timer = SessionTimer(self._tick)

        self.camera_enabled = False
        self.camera_status = "off"
        self.detector_status = "idle"
        self.detector_disabled = False
        self.vision_analysis = ""

        self._tasks: Dict[str, asyncio.Task] = {}
        self._background = set()
        self._generation = 0
        self._camera_lock = asyncio.Lock()
        self._last_emit = 0.0
        self._started_at: Optional[datetime] = None
        self._end_task: Optional[asyncio.Task] = None
        self.summary: Optional[dict] = None

    # ═════════════════════════════════════════════════════════
    #  SESSION LIFECYCLE
    # ═════════════════════════════════════════════════════════

    @property
    def session(self):
        return self.context.current

    def _require_session(self):
        if self.context.current is None:
            raise NoActiveSession("no active session")
        return self.context.current

    async def start_session(self, study_goal: str, energy_level: str,
                            duration_minutes: int = 0) -> dict:
        """Start fresh: any previous session, fusion state and nudges are discarded."""
        await self.reset_session()
        session = self.context.create(study_goal, energy_level, duration_minutes)
        self._started_at = datetime.now(timezone.utc)
        logger.info("[ENGINE] Session started: %s / %s / %s", session.study_goal.value,
                    session.energy_level.value,
                    f"{duration_minutes} min" if duration_minutes else "unlimited")

        self.timer.start()
        self._start_task("simulation", self._simulation_loop())
        self.nudges.observe(self.fusion.state.is_distracted,
                            session.study_goal.value, session.energy_level.value)
        self._publish_telemetry(force=True)
        return self.snapshot()

    async def end_session(self) -> dict:
        """Stop the session, fetch the reflection insight once, persist. Idempotent."""
        self._require_session()
        if self.summary is not None:
            return self.summary
        if self._end_task is None:
            self._end_task = asyncio.get_running_loop().create_task(self._finish())
        return await asyncio.shield(self._end_task)

    async def _finish(self) -> dict:
        session = self._require_session()
        session.ended = True
        self.timer.stop()
        self.nudges.close()
        await self._stop_tasks("simulation")
        await self.disable_camera()

        average = session.average_focus_score
        insight = await request_insight(
            self.llm, average, session.elapsed_sec,
            session.study_goal.value, session.energy_level.value,
        )
        record = await asyncio.to_thread(
            database.log_session,
            session.study_goal.value, session.energy_level.value,
            start_time=self._started_at,
            planned_seconds=session.planned_duration_sec,
            elapsed_seconds=session.elapsed_sec,
            average_focus=average,
            flow_level=session.flow_level.value,
            completed=session.complete,
            insight=insight,
        )
        if record is not None and self._started_at is not None:
            await asyncio.to_thread(database.attach_nudges, record["id"], self._started_at)

        summary = session.to_dict()
        summary.update({
            "session_id": record["id"] if record else None,
            "insight": insight,
            "focus_rating": focus_rating(average),
            "display_score": display_score(average),
            "duration_text": human_duration(session.elapsed_sec),
        })
        self.summary = summary
        logger.info("[ENGINE] Session ended after %ss (avg focus %.2f)",
                    session.elapsed_sec, average)
        self._send("session_complete", summary)
        return summary

    async def reset_session(self) -> None:
        """Exit to the start screen: stop everything and forget the session."""
        if self.context.current is not None:
            self.context.current.ended = True
        self.timer.stop()
        self.nudges.reset()
        if self._end_task is not None and not self._end_task.done():
            self._end_task.cancel()
            await asyncio.gather(self._end_task, return_exceptions=True)
        self._end_task = None
        await self._stop_tasks("simulation")
        await self.disable_camera()
        self.context.reset()
        self.summary = None
        self.detector_disabled = False
        self.detector_status = "idle"
        self.vision_analysis = ""
        self.simulator.reset()
        self.fusion.reset()
        self.companion.reset()

    async def shutdown(self) -> None:
        await self.reset_session()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        await self.llm.close()
        logger.info("[ENGINE] All resources released.")

    # ═════════════════════════════════════════════════════════
    #  CAMERA & MODE
    # ═════════════════════════════════════════════════════════

    async def enable_camera(self) -> bool:
        """Acquire models and the camera. False (simulation continues) on any failure."""
        self._require_session()
        async with self._camera_lock:
            if self.camera_enabled:
                return True

            if self._needs_estimator():
                loaded = await asyncio.to_thread(self.estimator.load)
                if not loaded:
                    self.camera_status = "Failed to initialize posture detection"
                    self._publish_status()
                    return False

            started = await asyncio.to_thread(self.camera.start)
            if not started:
                await asyncio.to_thread(self.estimator.close)
                self.camera_status = "Camera access denied or unavailable"
                logger.warning("[ENGINE] %s, staying on simulation", self.camera_status)
                self._publish_status()
                return False

            self.camera_enabled = True
            self.camera_status = "active"
            self._generation += 1
            await self._stop_tasks("simulation")
            self.fusion.reset()
            self._start_estimation()
            if not self.detector_disabled:
                self._start_task("objects", self._object_loop(self._generation))
            logger.info("[ENGINE] Camera enabled (%s backend, %s mode)",
                        self.posture_backend, self.fusion.mode.value)
            self._publish_status()
            return True

    async def disable_camera(self) -> None:
        """Stop loops, release models and the camera. Calling it twice is harmless."""
        async with self._camera_lock:
            if not self.camera_enabled:
                return
            self._generation += 1
            await self._stop_tasks("posture", "objects")
            await asyncio.to_thread(self.estimator.close)
            self.detector.close()
            await asyncio.to_thread(self.camera.stop)
            self.camera_enabled = False
            self.camera_status = "off"
            if not self.detector_disabled:
                self.detector_status = "idle"
            self.vision_analysis = ""
            self.simulator.reset()
            self.fusion.reset()
            if self.session is not None and self.session.active:
                self._start_task("simulation", self._simulation_loop())
            logger.info("[ENGINE] Camera disabled, simulation resumed")
            self._publish_status()

    async def set_mode(self, mode) -> Mode:
        """Switch posture <-> environment. Only the estimator is torn down / rebuilt."""
        mode = Mode(mode)
        async with self._camera_lock:
            if mode == self.fusion.mode:
                return mode
            self._generation += 1
            self.fusion.set_mode(mode)
            if self.camera_enabled:
                await self._stop_tasks("posture", "simulation")
                self.camera_status = "active"
                if mode == Mode.ENVIRONMENT:
                    await asyncio.to_thread(self.estimator.close)
                elif self._needs_estimator():
                    if not await asyncio.to_thread(self.estimator.load):
                        self.camera_status = "Failed to initialize posture detection"
                        logger.warning("[ENGINE] %s, falling back to simulation",
                                       self.camera_status)
                        self.simulator.reset()
                        self._start_task("simulation", self._simulation_loop())
                self._start_estimation()
                # the object loop keeps its model; give it the new generation
                if "objects" in self._tasks and not self.detector_disabled:
                    await self._stop_tasks("objects")
                    self._start_task("objects", self._object_loop(self._generation))
            self._publish_status()
            return mode

    def _needs_estimator(self) -> bool:
        return self.posture_backend == BACKEND_LANDMARKS and self.fusion.mode == Mode.POSTURE

    def _start_estimation(self) -> None:
        if self.fusion.mode != Mode.POSTURE:
            return
        if self.posture_backend == BACKEND_VISION:
            self._start_task("posture", self._vision_loop(self._generation))
        elif self.estimator.loaded:
            self._start_task("posture", self._posture_loop(self._generation))

    # ═════════════════════════════════════════════════════════
    #  PERIODIC LOOPS
    # ═════════════════════════════════════════════════════════

    async def _posture_loop(self, generation: int) -> None:
        last_frame_id = 0
        while True:
            await asyncio.sleep(config.POSTURE_UPDATE_INTERVAL)
            frame_id, frame = self.camera.read()
            if frame is None or frame_id == last_frame_id:
                continue
            last_frame_id = frame_id
            try:
                reading = await asyncio.to_thread(
                    self.estimator.process, frame, int(time.monotonic() * 1000))
            except Exception:
                logger.exception("[POSTURE] Frame processing failed")
                continue
            if reading is None or generation != self._generation:
                continue
            self.fusion.update_estimate(reading)

    async def _vision_loop(self, generation: int) -> None:
        while True:
            await asyncio.sleep(config.VISION_ANALYSIS_INTERVAL)
            _, frame = self.camera.read()
            if frame is None:
                continue
            result = await self.vision.analyze(frame)
            if generation != self._generation:
                continue
            self.vision_analysis = result.analysis
            self.fusion.update_estimate(result.reading)
            self.fusion.update_objects(
                ObjectReading(
                    phone_detected=result.phone_detected,
                    desk_cluttered=result.desk_cluttered,
                    distracting_items=result.distracting_items,
                ),
                source=SOURCE_VISION,
            )

    async def _object_loop(self, generation: int) -> None:
        if not await asyncio.to_thread(self.detector.load):
            self.detector_status = "Object detection unavailable"
            self._publish_status()
            return
        self.detector_status = "active"
        failures = 0
        # first sample right away, then one every OBJECT_DETECTION_INTERVAL
        while True:
            _, frame = self.camera.read()
            if frame is not None:
                try:
                    reading = await asyncio.to_thread(self.detector.sample, frame)
                except Exception as e:
                    failures += 1
                    logger.warning("[OBJECTS] Inference failed (%d/%d): %s",
                                   failures, config.OBJECT_MAX_FAILURES, e)
                    if failures >= config.OBJECT_MAX_FAILURES:
                        self.detector_disabled = True
                        self.detector_status = "Object detection disabled after repeated failures"
                        logger.warning("[OBJECTS] %s", self.detector_status)
                        self._publish_status()
                        return
                else:
                    failures = 0
                    if generation != self._generation:
                        return
                    self.fusion.update_objects(reading)
            await asyncio.sleep(config.OBJECT_DETECTION_INTERVAL)

    async def _simulation_loop(self) -> None:
        while True:
            await asyncio.sleep(config.SIMULATION_INTERVAL)
            self.fusion.update_estimate(self.simulator.step())

    def _tick(self) -> bool:
        session = self.context.current
        if session is None or not session.active:
            return False
        finished = session.tick(self.fusion.state.posture_score)
        self._publish_telemetry(force=True)
        if finished:
            logger.info("[ENGINE] Countdown finished")
            self._spawn(self._auto_end())
            return False
        return True

    async def _auto_end(self) -> None:
        try:
            await self.end_session()
        except NoActiveSession:
            logger.debug("[ENGINE] Session reset before it could be closed")

    # ═════════════════════════════════════════════════════════
    #  TASK HELPERS
    # ═════════════════════════════════════════════════════════

    def _start_task(self, name: str, coro) -> None:
        current = self._tasks.get(name)
        if current is not None and not current.done():
            coro.close()
            return
        task = asyncio.get_running_loop().create_task(coro, name=f"flowstate-{name}")
        self._tasks[name] = task

    async def _stop_tasks(self, *names: str) -> None:
        tasks = [self._tasks.pop(n) for n in names if n in self._tasks]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ═════════════════════════════════════════════════════════
    #  FUSION / NUDGE CALLBACKS & PUBLISHING
    # ═════════════════════════════════════════════════════════

    def _on_fusion(self, state: FusionState) -> None:
        session = self.context.current
        if session is None or not session.active:
            return
        self.nudges.observe(state.is_distracted, session.study_goal.value,
                            session.energy_level.value)
        self._publish_telemetry()

    def _on_nudge(self, text: str, loading: bool) -> None:
        self._send("nudge_update", {"nudge": text, "is_loading": loading})
        if not loading and text:
            self._spawn(asyncio.to_thread(
                database.log_nudge, text, bool(self.nudges.acted_value)))

    def _send(self, event: str, data: dict) -> None:
        if self._emit is None:
            return
        try:
            self._emit(event, data)
        except Exception:
            logger.exception("[ENGINE] Emit %s failed", event)

    def _publish_telemetry(self, force: bool = False) -> None:
        now = time.monotonic()
        if not force and now - self._last_emit < config.TELEMETRY_EMIT_INTERVAL:
            return
        self._last_emit = now
        self._send("telemetry_update", self.snapshot())

    def _publish_status(self) -> None:
        self._send("system_status", self.status())

    def status(self) -> dict:
        return {
            "version": config.VERSION,
            "llm_online": self.llm.online,
            "camera_enabled": self.camera_enabled,
            "camera_status": self.camera_status,
            "detector_status": self.detector_status,
            "posture_backend": self.posture_backend,
            "mode": self.fusion.mode.value,
        }

    def snapshot(self) -> dict:
        state = self.fusion.state
        session = self.context.current
        return {
            "session": session.to_dict() if session else None,
            "fusion": state.to_dict(),
            "display_score": display_score(state.posture_score),
            "mode": self.fusion.mode.value,
            "camera_enabled": self.camera_enabled,
            "camera_status": self.camera_status,
            "detector_status": self.detector_status,
            "vision_analysis": self.vision_analysis,
            "nudge": {"text": self.nudges.nudge, "is_loading": self.nudges.is_loading},
        }
