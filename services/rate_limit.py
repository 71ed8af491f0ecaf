"""Rate-Limit Controller — one cancellable countdown per generation session.

States::

    IDLE ──start(duration, on_fire)──▶ COUNTING_DOWN ──tick…0──▶ on_fire() ─▶ IDLE
                                            │
                                            └──cancel()──▶ IDLE (resume discarded)

While counting down the controller emits ``rate_limit_wait{resetIn}`` once
per tick with the seconds remaining.  ``wait(duration)`` is the awaitable
form the Generation Session uses to pause the interrupted turn and retry it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import random
from enum import Enum
from typing import Any, Awaitable, Callable

from errors.exceptions import GenerationCancelled, ProviderRateLimitError
from models.ws_events import EventPayload, RateLimitWait

logger = logging.getLogger(__name__)

Emit = Callable[[EventPayload], Awaitable[None]]

_EXPONENTIAL_CAP = 60.0


class RateLimitPhase(str, Enum):
    IDLE = "idle"
    COUNTING_DOWN = "counting_down"


def compute_backoff(
    error: ProviderRateLimitError,
    attempt: int,
    *,
    max_wait: int = 120,
    jitter: Callable[[], float] = random.random,
) -> int:
    """Whole seconds to wait before retrying a throttled call.

    Uses the provider's ``retry-after`` hint when present (clamped to
    ``[1, max_wait]``), otherwise ``2**attempt`` capped at 60 s.  Up to one
    second of jitter is added so parallel sessions do not retry in lockstep.
    """
    if error.retry_after is not None:
        base = min(max(error.retry_after, 1.0), float(max_wait))
    else:
        base = min(2.0 ** attempt, _EXPONENTIAL_CAP)
    return max(1, min(math.ceil(base + jitter()), max_wait))


class RateLimitController:
    """Countdown timer with exactly-once resume."""

    def __init__(self, emit: Emit, *, tick_seconds: float = 1.0) -> None:
        self._emit = emit
        self._tick = tick_seconds
        self._phase = RateLimitPhase.IDLE
        self._reset_in = 0
        self._task: asyncio.Task | None = None
        self._waiter: asyncio.Future | None = None

    @property
    def phase(self) -> RateLimitPhase:
        return self._phase

    @property
    def active(self) -> bool:
        return self._phase is RateLimitPhase.COUNTING_DOWN

    @property
    def reset_in(self) -> int:
        return self._reset_in

    def start(self, duration: int, on_fire: Callable[[], Any]) -> None:
        """Begin counting down ``duration`` seconds, then call ``on_fire`` once."""
        if self.active:
            raise RuntimeError("A rate-limit countdown is already active")
        self._phase = RateLimitPhase.COUNTING_DOWN
        self._reset_in = duration
        logger.info("[RateLimit] Countdown started: %ds", duration)
        self._task = asyncio.create_task(self._run(duration, on_fire))
        self._task.add_done_callback(self._on_task_done)

    async def _run(self, duration: int, on_fire: Callable[[], Any]) -> None:
        remaining = duration
        while remaining > 0:
            self._reset_in = remaining
            await self._emit(RateLimitWait(reset_in=remaining))
            await asyncio.sleep(self._tick)
            remaining -= 1

        self._phase = RateLimitPhase.IDLE
        self._reset_in = 0
        self._task = None
        logger.info("[RateLimit] Countdown finished, resuming")
        result = on_fire()
        if inspect.isawaitable(result):
            await result

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("[RateLimit] Countdown failed: %s", exc)
        self._phase = RateLimitPhase.IDLE
        self._reset_in = 0
        self._task = None
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_exception(exc)

    def cancel(self) -> None:
        """Stop the countdown and discard the pending resume."""
        if self._task is not None:
            self._task.cancel()
            logger.info("[RateLimit] Countdown cancelled with %ds left", self._reset_in)
        self._task = None
        self._phase = RateLimitPhase.IDLE
        self._reset_in = 0
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_exception(GenerationCancelled("Rate-limit wait cancelled"))
        self._waiter = None

    async def wait(self, duration: int) -> None:
        """Count down and return when the resume fires.

        Raises:
            GenerationCancelled: ``cancel()`` was called before zero.
        """
        waiter = asyncio.get_running_loop().create_future()
        self._waiter = waiter

        def _resume() -> None:
            if not waiter.done():
                waiter.set_result(None)

        self.start(duration, _resume)
        try:
            await waiter
        finally:
            if self._waiter is waiter:
                self._waiter = None
