"""Tests for the Anthropic conversation driver — stream translation, throttling, probes."""

from contextlib import aclosing
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest

from errors.exceptions import ProviderRateLimitError
from models.ws_events import RateLimitStatus
from services.anthropic_service import (
    AnthropicService,
    TextDelta,
    ToolCallArgDelta,
    ToolCallAssembler,
    ToolCallComplete,
    ToolCallStart,
    TurnComplete,
    is_rate_limit_sufficient,
    parse_retry_after,
    to_rate_limit_error,
)

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _status_error(cls, status, headers=None):
    response = httpx.Response(status, headers=headers or {}, request=_REQUEST)
    return cls(message=f"status {status}", response=response, body=None)


def _start(index, block):
    return SimpleNamespace(type="content_block_start", index=index, content_block=block)


def _delta(index, delta):
    return SimpleNamespace(type="content_block_delta", index=index, delta=delta)


def _stop(index):
    return SimpleNamespace(type="content_block_stop", index=index)


def _raw_stream():
    return [
        SimpleNamespace(type="message_start"),
        _start(0, SimpleNamespace(type="text", text="")),
        _delta(0, SimpleNamespace(type="text_delta", text="Searching ")),
        _delta(0, SimpleNamespace(type="text_delta", text="now.")),
        _stop(0),
        _start(1, SimpleNamespace(type="server_tool_use", id="srvtoolu_1", name="web_search", input={})),
        _delta(1, SimpleNamespace(type="input_json_delta", partial_json='{"query": "sto')),
        _delta(1, SimpleNamespace(type="input_json_delta", partial_json='ic ethics"}')),
        _stop(1),
        _start(2, SimpleNamespace(type="web_search_tool_result")),
        _stop(2),
        _start(3, SimpleNamespace(type="tool_use", id="toolu_1", name="finalize_week", input={})),
        _delta(3, SimpleNamespace(type="input_json_delta", partial_json='{"weekIndex": 1, ')),
        _delta(3, SimpleNamespace(type="input_json_delta", partial_json='"steps": []}')),
        _stop(3),
        SimpleNamespace(type="message_delta", delta=SimpleNamespace(stop_reason="tool_use")),
        SimpleNamespace(type="message_stop"),
    ]


class FakeStream:
    """Stands in for the SDK's AsyncStream: async-iterable, closable, a context manager."""

    def __init__(self, items):
        self._items = list(items)
        self.closed = False

    async def __aiter__(self):
        for item in self._items:
            yield item

    async def close(self):
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()


def _client(create=None, count_tokens=None):
    return SimpleNamespace(messages=SimpleNamespace(
        create=create or AsyncMock(),
        with_raw_response=SimpleNamespace(count_tokens=count_tokens or AsyncMock()),
    ))


# ── ToolCallAssembler ───────────────────────────────────────


def test_assembler_joins_fragments():
    asm = ToolCallAssembler()
    asm.start("c1", "finalize_week")
    asm.append("c1", '{"weekIndex": ')
    asm.append("c1", "2}")
    done = asm.finish("c1")
    assert done == ToolCallComplete("c1", "finalize_week", {"weekIndex": 2}, False)
    assert "c1" not in asm


def test_assembler_malformed_json_yields_empty_arguments():
    asm = ToolCallAssembler()
    asm.start("c1", "finalize_week")
    asm.append("c1", '{"weekIndex": 2, "steps": [')
    assert asm.finish("c1").arguments == {}


def test_assembler_non_object_json_yields_empty_arguments():
    asm = ToolCallAssembler()
    asm.start("c1", "provide_urls")
    asm.append("c1", "[1, 2]")
    assert asm.finish("c1").arguments == {}


def test_assembler_without_fragments_uses_initial_input():
    asm = ToolCallAssembler()
    asm.start("s1", "web_search", server_side=True, initial={"query": "zeno"})
    done = asm.finish("s1")
    assert done.arguments == {"query": "zeno"}
    assert done.server_side


def test_assembler_ignores_unknown_call():
    asm = ToolCallAssembler()
    asm.append("missing", "{}")
    assert "missing" not in asm


# ── Headers ─────────────────────────────────────────────────


def test_parse_retry_after_seconds():
    assert parse_retry_after({"retry-after": "12"}) == 12.0


def test_parse_retry_after_from_reset_timestamp():
    now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    headers = {"anthropic-ratelimit-requests-reset": "2026-01-01T12:00:30Z"}
    assert parse_retry_after(headers, now=now) == 30.0


def test_parse_retry_after_missing_or_garbage():
    assert parse_retry_after({}) is None
    assert parse_retry_after({"anthropic-ratelimit-requests-reset": "soon"}) is None


def test_to_rate_limit_error_reads_headers():
    exc = _status_error(anthropic.RateLimitError, 429, {
        "retry-after": "20",
        "anthropic-ratelimit-requests-remaining": "0",
        "anthropic-ratelimit-requests-limit": "50",
    })
    err = to_rate_limit_error(exc)
    assert err.retry_after == 20.0
    assert (err.remaining, err.limit, err.status_code) == (0, 50, 429)
    assert str(err) == "Rate limit exceeded during generation"


def test_overloaded_is_tagged_as_rate_limit():
    err = to_rate_limit_error(_status_error(anthropic.APIStatusError, 529))
    assert err.status_code == 529
    assert str(err) == "Provider is overloaded"


def test_rate_limit_sufficiency():
    assert is_rate_limit_sufficient(RateLimitStatus(status="ok", message="", remaining=40), 10)
    assert not is_rate_limit_sufficient(RateLimitStatus(status="ok", message="", remaining=9), 10)
    assert not is_rate_limit_sufficient(RateLimitStatus(status="exceeded", message=""), 10)
    assert is_rate_limit_sufficient(RateLimitStatus(status="ok", message=""), 10)


# ── run_turn ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_run_turn_translates_stream(settings):
    create = AsyncMock(return_value=FakeStream(_raw_stream()))
    service = AnthropicService(client=_client(create=create))

    events = [
        e async for e in service.run_turn(
            [{"role": "user", "content": "go"}],
            [{"name": "finalize_week"}],
            "system prompt",
            model="claude-test",
            max_tokens=100,
        )
    ]

    assert [type(e) for e in events] == [
        TextDelta, TextDelta,
        ToolCallStart, ToolCallArgDelta, ToolCallArgDelta, ToolCallComplete,
        ToolCallStart, ToolCallArgDelta, ToolCallArgDelta, ToolCallComplete,
        TurnComplete,
    ]
    search = events[5]
    assert search.server_side and search.arguments == {"query": "stoic ethics"}
    finalize = events[9]
    assert not finalize.server_side and finalize.arguments == {"weekIndex": 1, "steps": []}

    done = events[-1]
    assert done.stop_reason == "tool_use"
    assert done.content == [
        {"type": "text", "text": "Searching now."},
        {"type": "tool_use", "id": "toolu_1", "name": "finalize_week", "input": {"weekIndex": 1, "steps": []}},
    ]

    kwargs = create.await_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["model"] == "claude-test"
    assert kwargs["system"][0]["cache_control"] == {"type": "ephemeral"}
    assert "tool_choice" not in kwargs


@pytest.mark.asyncio
async def test_run_turn_passes_tool_choice(settings):
    create = AsyncMock(return_value=FakeStream([
        SimpleNamespace(type="message_delta", delta=SimpleNamespace(stop_reason="end_turn")),
    ]))
    service = AnthropicService(client=_client(create=create))
    choice = {"type": "tool", "name": "plan_curriculum"}

    events = [
        e async for e in service.run_turn([], [{"name": "plan_curriculum"}], "s",
                                          model="m", max_tokens=10, tool_choice=choice)
    ]

    assert events == [TurnComplete("end_turn", [])]
    assert create.await_args.kwargs["tool_choice"] == choice


@pytest.mark.asyncio
async def test_run_turn_closes_stream_on_full_read(settings):
    stream = FakeStream(_raw_stream())
    service = AnthropicService(client=_client(create=AsyncMock(return_value=stream)))

    async for _ in service.run_turn([], [], "s", model="m", max_tokens=10):
        pass

    assert stream.closed


@pytest.mark.asyncio
async def test_run_turn_closes_stream_when_consumer_stops_early(settings):
    stream = FakeStream(_raw_stream())
    service = AnthropicService(client=_client(create=AsyncMock(return_value=stream)))

    async with aclosing(service.run_turn([], [], "s", model="m", max_tokens=10)) as events:
        async for event in events:
            assert isinstance(event, TextDelta)
            break

    assert stream.closed


@pytest.mark.asyncio
async def test_run_turn_maps_rate_limit(settings):
    exc = _status_error(anthropic.RateLimitError, 429, {"retry-after": "7"})
    service = AnthropicService(client=_client(create=AsyncMock(side_effect=exc)))

    with pytest.raises(ProviderRateLimitError) as exc_info:
        async for _ in service.run_turn([], [], "s", model="m", max_tokens=10):
            pass
    assert exc_info.value.retry_after == 7.0


@pytest.mark.asyncio
async def test_run_turn_maps_overloaded(settings):
    exc = _status_error(anthropic.APIStatusError, 529)
    service = AnthropicService(client=_client(create=AsyncMock(side_effect=exc)))

    with pytest.raises(ProviderRateLimitError) as exc_info:
        async for _ in service.run_turn([], [], "s", model="m", max_tokens=10):
            pass
    assert exc_info.value.status_code == 529


@pytest.mark.asyncio
async def test_run_turn_propagates_other_errors(settings):
    exc = _status_error(anthropic.BadRequestError, 400)
    service = AnthropicService(client=_client(create=AsyncMock(side_effect=exc)))

    with pytest.raises(anthropic.BadRequestError):
        async for _ in service.run_turn([], [], "s", model="m", max_tokens=10):
            pass


# ── probe_rate_limit ────────────────────────────────────────


@pytest.mark.asyncio
async def test_probe_ok(settings):
    raw = SimpleNamespace(headers={
        "anthropic-ratelimit-requests-remaining": "45",
        "anthropic-ratelimit-requests-limit": "50",
    })
    service = AnthropicService(client=_client(count_tokens=AsyncMock(return_value=raw)))

    status = await service.probe_rate_limit()

    assert status.status == "ok"
    assert (status.remaining, status.limit) == (45, 50)


@pytest.mark.asyncio
async def test_probe_low(settings):
    raw = SimpleNamespace(headers={
        "anthropic-ratelimit-requests-remaining": "4",
        "anthropic-ratelimit-requests-limit": "50",
    })
    service = AnthropicService(client=_client(count_tokens=AsyncMock(return_value=raw)))

    status = await service.probe_rate_limit()

    assert status.status == "low"
    assert status.message == "Only 4/50 requests remaining."


@pytest.mark.asyncio
async def test_probe_exceeded(settings):
    exc = _status_error(anthropic.RateLimitError, 429, {"retry-after": "42"})
    service = AnthropicService(client=_client(count_tokens=AsyncMock(side_effect=exc)))

    status = await service.probe_rate_limit()

    assert status.status == "exceeded"
    assert status.reset_in == 42
    assert status.message == "Rate limit exceeded. Resets in 42s."


@pytest.mark.asyncio
async def test_probe_overloaded(settings):
    exc = _status_error(anthropic.APIStatusError, 529)
    service = AnthropicService(client=_client(count_tokens=AsyncMock(side_effect=exc)))

    status = await service.probe_rate_limit()

    assert status.status == "exceeded"
    assert "overloaded" in status.message
