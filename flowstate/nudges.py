"""
============================================================
 FLOWSTATE — Nudge Generator
 Watches is_distracted for transitions, debounces them and
 asks the remote text service for one short sentence.

 Request ids: every outbound request gets the next id and
 only the response carrying the latest id is applied, so a
 slow stale answer can never overwrite a newer one.
============================================================
"""

import asyncio
import logging
from typing import Callable, Optional, Set

import config
from flowstate.llm import ServiceUnavailable
from flowstate.prompts import nudge_messages

logger = logging.getLogger(__name__)


def fallback_nudge(is_distracted: bool) -> str:
    key = "distracted" if is_distracted else "focused"
    return config.NUDGE_FALLBACK_MESSAGES[key]


class NudgeGenerator:
    """Communication layer only: it never decides distraction itself."""

    def __init__(self, llm, on_update: Optional[Callable[[str, bool], None]] = None,
                 debounce: float = config.NUDGE_DEBOUNCE,
                 model: str = config.NUDGE_MODEL):
        self._llm = llm
        self.on_update = on_update
        self.debounce = debounce
        self.model = model

        self.nudge: str = fallback_nudge(False)
        self.is_loading: bool = False
        self.study_goal: Optional[str] = None
        self.energy_level: Optional[str] = None

        self._latest: Optional[bool] = None     # last observed value
        self._acted: Optional[bool] = None      # last value a request was sent for
        self._timer: Optional[asyncio.TimerHandle] = None
        self._request_id = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def acted_value(self) -> Optional[bool]:
        """The is_distracted value of the most recent request."""
        return self._acted

    @property
    def debouncing(self) -> bool:
        return self._timer is not None

    def observe(self, is_distracted: bool, study_goal: Optional[str] = None,
                energy_level: Optional[str] = None) -> None:
        """Feed the current flag. Must be called from the event loop thread."""
        if study_goal is not None:
            self.study_goal = study_goal
        if energy_level is not None:
            self.energy_level = energy_level

        is_distracted = bool(is_distracted)
        if self._latest is None:
            # first value: no debounce
            self._latest = is_distracted
            self._send(is_distracted)
            return
        if is_distracted == self._latest:
            return

        self._latest = is_distracted
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._settle)

    def _settle(self) -> None:
        self._timer = None
        value = self._latest
        if value == self._acted:
            logger.debug("[NUDGE] Settled back to %s, no request", value)
            return
        self._send(value)

    def _send(self, is_distracted: bool) -> None:
        self._acted = is_distracted
        self._request_id += 1
        request_id = self._request_id
        self.is_loading = True
        self._notify()
        task = asyncio.get_running_loop().create_task(
            self._request(request_id, is_distracted, self.study_goal, self.energy_level)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _request(self, request_id: int, is_distracted: bool,
                       study_goal: Optional[str], energy_level: Optional[str]) -> None:
        try:
            text = await asyncio.wait_for(
                self._llm.complete(
                    self.model,
                    nudge_messages(is_distracted, study_goal or "general study",
                                   energy_level or "medium"),
                    max_tokens=60,
                    temperature=0.8,
                ),
                timeout=config.LLM_TIMEOUT + 2,
            )
            text = text.strip().strip('"').strip()
            if not text:
                raise ServiceUnavailable("empty response")
        except ServiceUnavailable as e:
            logger.warning("[NUDGE] Service unavailable (%s), using fallback", e)
            text = fallback_nudge(is_distracted)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[NUDGE] Request failed, using fallback")
            text = fallback_nudge(is_distracted)

        if request_id != self._request_id:
            logger.debug("[NUDGE] Dropping stale response #%d", request_id)
            return
        self.nudge = text
        self.is_loading = False
        logger.info("[NUDGE] %s -> %s", "distracted" if is_distracted else "focused", text)
        self._notify()

    def _notify(self) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(self.nudge, self.is_loading)
        except Exception:
            logger.exception("[NUDGE] on_update failed")

    def close(self) -> None:
        """Cancel the debounce timer and any in-flight request."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._request_id += 1  # anything still in flight is now stale
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.is_loading = False

    def reset(self) -> None:
        self.close()
        self.nudge = fallback_nudge(False)
        self._latest = None
        self._acted = None

    async def drain(self) -> None:
        """Wait for in-flight requests (used on shutdown and in tests)."""
        while self._tasks:
            pending = list(self._tasks)
            await asyncio.gather(*pending, return_exceptions=True)
            self._tasks.difference_update(pending)
