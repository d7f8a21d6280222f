"""
============================================================
 FLOWSTATE — Remote Text Generation Client
 One async OpenAI-compatible client (Groq by default).
 Every failure surfaces as ServiceUnavailable, so callers
 have exactly one fallback path.
============================================================
"""

import logging
import time
from typing import AsyncIterator, List, Optional

import openai

import config

logger = logging.getLogger(__name__)


class ServiceUnavailable(Exception):
    """The remote text service could not produce an answer."""

    def __init__(self, reason: str, status: Optional[int] = None):
        super().__init__(reason if status is None else f"{reason} ({status})")
        self.reason = reason
        self.status = status


class LLMClient:
    """Async chat-completions wrapper with uniform failure handling and 429 backoff."""

    def __init__(self, api_key: str = config.LLM_API_KEY,
                 base_url: str = config.LLM_BASE_URL,
                 timeout: float = config.LLM_TIMEOUT,
                 client=None, clock=time.monotonic):
        self._clock = clock
        self._backoff_until = 0.0
        self._consecutive_429s = 0
        self.client = client
        if self.client is None and api_key:
            self.client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout,
                max_retries=0,  # no SDK retries, callers fall back instead
            )
            logger.info("[LLM] Client initialized ✓ (%s)", base_url)
        elif self.client is None:
            logger.warning("[LLM] ⚠ No API key — running in OFFLINE mode")

    @property
    def online(self) -> bool:
        return self.client is not None

    @property
    def backing_off(self) -> bool:
        return self._clock() < self._backoff_until

    def _check_ready(self) -> None:
        if self.client is None:
            raise ServiceUnavailable("no api key")
        if self.backing_off:
            raise ServiceUnavailable("rate limited", 429)

    def _translate(self, exc: Exception) -> ServiceUnavailable:
        if isinstance(exc, openai.RateLimitError):
            self._consecutive_429s += 1
            backoff = min(
                config.LLM_BACKOFF_BASE * (2 ** (self._consecutive_429s - 1)),
                config.LLM_BACKOFF_MAX,
            )
            self._backoff_until = self._clock() + backoff
            logger.warning("[LLM] ⚡ Rate limited — backing off %ss", backoff)
            return ServiceUnavailable("rate limited", 429)
        if isinstance(exc, openai.APIStatusError):
            if exc.status_code == 402:
                return ServiceUnavailable("quota exhausted", 402)
            return ServiceUnavailable("http error", exc.status_code)
        if isinstance(exc, openai.APITimeoutError):
            return ServiceUnavailable("timeout")
        if isinstance(exc, openai.APIConnectionError):
            return ServiceUnavailable("network")
        return ServiceUnavailable(f"unexpected {type(exc).__name__}")

    async def complete(self, model: str, messages: List[dict],
                       max_tokens: int = 100, temperature: float = 0.7) -> str:
        """One chat completion. Returns stripped text or raises ServiceUnavailable."""
        self._check_ready()
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except Exception as e:
            raise self._translate(e) from e

        self._consecutive_429s = 0
        content = None
        if response.choices:
            content = response.choices[0].message.content
        if not content or not content.strip():
            raise ServiceUnavailable("empty response")
        return content.strip()

    async def stream(self, model: str, messages: List[dict],
                     max_tokens: int = 400, temperature: float = 0.7) -> AsyncIterator[str]:
        """Yield incremental text chunks. Raises ServiceUnavailable on any failure."""
        self._check_ready()
        try:
            stream = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except ServiceUnavailable:
            raise
        except Exception as e:
            raise self._translate(e) from e
        self._consecutive_429s = 0

    async def close(self) -> None:
        if self.client is not None:
            try:
                await self.client.close()
            except Exception:
                logger.exception("[LLM] Error closing client")
