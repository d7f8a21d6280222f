"""
============================================================
 FLOWSTATE — "Flow" Study Companion Chat
 Streams the reply chunk by chunk; the web layer wraps the
 chunks as server-sent events.
============================================================
"""

import asyncio
import json
import logging
from typing import AsyncIterator, List, Optional

import config
from flowstate.llm import ServiceUnavailable
from flowstate.prompts import chat_system_prompt

logger = logging.getLogger(__name__)


def sse_event(payload) -> str:
    return f"data: {json.dumps(payload)}\n\n"


SSE_DONE = "data: [DONE]\n\n"


class StudyCompanion:
    """Chat history for one session, starting with Flow's greeting."""

    def __init__(self, llm, model: str = config.CHAT_MODEL) -> None:
        self._llm = llm
        self.model = model
        self.history: List[dict] = []
        self._lock = asyncio.Lock()
        self.reset()

    def reset(self) -> None:
        self.history = [{"role": "assistant", "content": config.CHAT_GREETING}]

    def _request_messages(self, study_goal: Optional[str],
                          energy_level: Optional[str]) -> List[dict]:
        recent = self.history[-config.CHAT_HISTORY_LIMIT:]
        return [{"role": "system", "content": chat_system_prompt(study_goal, energy_level)}] + recent

    async def reply(self, message: str, study_goal: Optional[str] = None,
                    energy_level: Optional[str] = None) -> AsyncIterator[str]:
        """Yield the assistant's reply in chunks. Failures yield the apology line."""
        async with self._lock:
            self.history.append({"role": "user", "content": message})
            chunks: List[str] = []
            try:
                async for chunk in self._llm.stream(
                        self.model, self._request_messages(study_goal, energy_level)):
                    chunks.append(chunk)
                    yield chunk
            except ServiceUnavailable as e:
                logger.warning("[CHAT] Service unavailable (%s)", e)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[CHAT] Stream failed")
            else:
                if chunks:
                    self.history.append({"role": "assistant", "content": "".join(chunks)})
                    return
                logger.warning("[CHAT] Empty reply")

            if chunks:
                self.history.append({"role": "assistant", "content": "".join(chunks)})
            self.history.append({"role": "assistant", "content": config.CHAT_ERROR_MESSAGE})
            yield config.CHAT_ERROR_MESSAGE

    async def sse(self, message: str, study_goal: Optional[str] = None,
                  energy_level: Optional[str] = None) -> AsyncIterator[str]:
        async for chunk in self.reply(message, study_goal, energy_level):
            yield sse_event({"content": chunk})
        yield SSE_DONE
