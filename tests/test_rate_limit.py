"""Tests for backoff computation and the Rate-Limit Controller countdown."""

import asyncio

import pytest

from errors.exceptions import GenerationCancelled, ProviderRateLimitError
from services.rate_limit import RateLimitController, RateLimitPhase, compute_backoff
from tests.fakes import EventLog


def _no_jitter():
    return 0.0


# ── compute_backoff ─────────────────────────────────────────


def test_backoff_uses_retry_after():
    err = ProviderRateLimitError(retry_after=7.0)
    assert compute_backoff(err, 0, jitter=_no_jitter) == 7


def test_backoff_clamps_retry_after():
    assert compute_backoff(ProviderRateLimitError(retry_after=0.0), 0, jitter=_no_jitter) == 1
    assert compute_backoff(ProviderRateLimitError(retry_after=900.0), 0, jitter=_no_jitter) == 120
    assert compute_backoff(
        ProviderRateLimitError(retry_after=90.0), 0, max_wait=30, jitter=_no_jitter
    ) == 30


def test_backoff_exponential_without_hint():
    err = ProviderRateLimitError()
    assert compute_backoff(err, 0, jitter=_no_jitter) == 1
    assert compute_backoff(err, 3, jitter=_no_jitter) == 8
    assert compute_backoff(err, 10, jitter=_no_jitter) == 60


def test_backoff_jitter_rounds_up():
    err = ProviderRateLimitError(retry_after=4.0)
    assert compute_backoff(err, 0, jitter=lambda: 0.3) == 5


# ── RateLimitController ─────────────────────────────────────


@pytest.mark.asyncio
async def test_countdown_emits_each_second_then_fires_once():
    events = EventLog()
    controller = RateLimitController(events, tick_seconds=0.001)
    fired = []
    done = asyncio.Event()

    def on_fire():
        fired.append(True)
        done.set()

    controller.start(3, on_fire)
    assert controller.active
    assert controller.phase is RateLimitPhase.COUNTING_DOWN

    await asyncio.wait_for(done.wait(), timeout=2)

    assert [e.reset_in for e in events.events] == [3, 2, 1]
    assert fired == [True]
    assert not controller.active
    assert controller.reset_in == 0


@pytest.mark.asyncio
async def test_async_on_fire_is_awaited():
    controller = RateLimitController(EventLog(), tick_seconds=0.001)
    fired = asyncio.Event()

    async def on_fire():
        fired.set()

    controller.start(1, on_fire)
    await asyncio.wait_for(fired.wait(), timeout=2)


@pytest.mark.asyncio
async def test_cancel_prevents_fire():
    events = EventLog()
    controller = RateLimitController(events, tick_seconds=0.05)
    fired = []

    controller.start(5, lambda: fired.append(True))
    await asyncio.sleep(0.01)
    controller.cancel()
    await asyncio.sleep(0.3)

    assert fired == []
    assert not controller.active
    assert len(events.events) == 1


@pytest.mark.asyncio
async def test_start_while_active_is_refused():
    controller = RateLimitController(EventLog(), tick_seconds=0.05)
    controller.start(5, lambda: None)
    with pytest.raises(RuntimeError):
        controller.start(5, lambda: None)
    controller.cancel()


@pytest.mark.asyncio
async def test_wait_returns_after_countdown():
    events = EventLog()
    controller = RateLimitController(events, tick_seconds=0.001)

    await asyncio.wait_for(controller.wait(2), timeout=2)

    assert [e.reset_in for e in events.events] == [2, 1]
    assert controller.phase is RateLimitPhase.IDLE


@pytest.mark.asyncio
async def test_wait_raises_when_cancelled():
    controller = RateLimitController(EventLog(), tick_seconds=0.05)

    async def cancel_soon():
        await asyncio.sleep(0.01)
        controller.cancel()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(GenerationCancelled):
        await controller.wait(10)
    await canceller


@pytest.mark.asyncio
async def test_emit_failure_surfaces_to_waiter():
    async def broken_emit(payload):
        raise ConnectionError("socket gone")

    controller = RateLimitController(broken_emit, tick_seconds=0.001)
    with pytest.raises(ConnectionError):
        await asyncio.wait_for(controller.wait(3), timeout=2)
    assert not controller.active
