"""Global request pacing for outbound LLM API calls.

Two layers, both per worker process:

- ``RequestWindow`` — sliding one-minute window capping requests per minute
  (the provider's tier limit is per minute, not per concurrent call).
- An ``asyncio.Semaphore`` capping the number of *concurrent* streams.

Callers use ``llm_slot()`` as an async context manager around one provider
request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

logger = logging.getLogger(__name__)

_WINDOW_SECONDS = 60.0


class RequestWindow:
    """Sliding-window limiter: at most ``max_per_minute`` acquisitions per 60 s.

    Waiters are served in arrival order; each waits until the oldest
    timestamp in the window expires.
    """

    def __init__(
        self,
        max_per_minute: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        window_seconds: float = _WINDOW_SECONDS,
    ) -> None:
        if max_per_minute < 1:
            raise ValueError("max_per_minute must be >= 1")
        self._max = max_per_minute
        self._clock = clock
        self._window = window_seconds
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self._window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    @property
    def in_window(self) -> int:
        self._prune(self._clock())
        return len(self._timestamps)

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._timestamps) < self._max:
                    self._timestamps.append(now)
                    return
                wait = max(self._timestamps[0] + self._window - now, 0.1)
                logger.info("[RequestWindow] %d requests in window, waiting %.1fs", self._max, wait)
                await asyncio.sleep(wait)


# ── Process-wide singletons ─────────────────────────────────

_request_window: RequestWindow | None = None
_llm_semaphore: asyncio.Semaphore | None = None


def _get_window() -> RequestWindow:
    """Lazy-init so settings are read after the app configures them."""
    global _request_window
    if _request_window is None:
        from config.settings import get_settings

        rpm = get_settings().llm_requests_per_minute
        _request_window = RequestWindow(rpm)
        logger.info("LLM request window initialized (max=%d/min)", rpm)
    return _request_window


def _get_semaphore() -> asyncio.Semaphore:
    """Lazy-init to ensure semaphore is bound to the running event loop."""
    global _llm_semaphore
    if _llm_semaphore is None:
        from config.settings import get_settings

        limit = get_settings().max_concurrent_llm_calls
        _llm_semaphore = asyncio.Semaphore(limit)
        logger.info("LLM concurrency semaphore initialized (max=%d)", limit)
    return _llm_semaphore


@asynccontextmanager
async def llm_slot() -> AsyncIterator[None]:
    """Hold one request-window slot and one concurrency slot for a provider call.

    Usage::

        async with llm_slot():
            async with await client.messages.create(..., stream=True) as stream:
                ...
    """
    await _get_window().acquire()
    async with _get_semaphore():
        yield


def reset_limits() -> None:
    """Drop the singletons (tests, or after a settings change)."""
    global _request_window, _llm_semaphore
    _request_window = None
    _llm_semaphore = None
