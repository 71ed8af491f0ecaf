"""Conversation Driver — one streamed request/response exchange with Claude.

``run_turn`` sends system prompt + tool definitions + message history and
yields a flat stream of turn events:

- ``TextDelta``          — incremental assistant text
- ``ToolCallStart``      — a tool call block opened (client or server tool)
- ``ToolCallArgDelta``   — one partial-JSON fragment of its arguments
- ``ToolCallComplete``   — arguments reassembled and parsed (``{}`` on bad JSON)
- ``TurnComplete``       — stop reason + assistant blocks to append to history

Provider throttling (429 / 529) is re-raised as ``ProviderRateLimitError``;
every other SDK error propagates unchanged.  Appending the assistant
message to history is the caller's job.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Mapping, Union

import anthropic

from config.settings import get_settings
from errors.exceptions import ProviderRateLimitError
from models.ws_events import RateLimitStatus
from services.concurrency import llm_slot

logger = logging.getLogger(__name__)

_OVERLOADED_STATUS = 529


# ── Turn events ─────────────────────────────────────────────


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStart:
    call_id: str
    name: str
    server_side: bool = False


@dataclass(frozen=True)
class ToolCallArgDelta:
    call_id: str
    fragment: str


@dataclass(frozen=True)
class ToolCallComplete:
    call_id: str
    name: str
    arguments: dict[str, Any]
    server_side: bool = False


@dataclass(frozen=True)
class TurnComplete:
    stop_reason: str | None
    content: list[dict[str, Any]] = field(default_factory=list)


TurnEvent = Union[TextDelta, ToolCallStart, ToolCallArgDelta, ToolCallComplete, TurnComplete]


# ── Tool argument reassembly ────────────────────────────────


@dataclass
class _PendingCall:
    name: str
    server_side: bool
    fragments: list[str] = field(default_factory=list)
    initial: dict[str, Any] = field(default_factory=dict)


class ToolCallAssembler:
    """Concatenate partial-JSON fragments per tool-call id; parse on completion.

    A parse failure yields an empty argument object instead of raising, so
    the caller can still answer the call with a (likely invalid) tool result.
    """

    def __init__(self) -> None:
        self._pending: dict[str, _PendingCall] = {}

    def start(
        self,
        call_id: str,
        name: str,
        *,
        server_side: bool = False,
        initial: dict[str, Any] | None = None,
    ) -> None:
        self._pending[call_id] = _PendingCall(name, server_side, initial=dict(initial or {}))

    def append(self, call_id: str, fragment: str) -> None:
        pending = self._pending.get(call_id)
        if pending is None:
            logger.warning("Argument fragment for unknown tool call %s dropped", call_id)
            return
        pending.fragments.append(fragment)

    def finish(self, call_id: str) -> ToolCallComplete:
        pending = self._pending.pop(call_id)
        raw = "".join(pending.fragments)
        if not raw.strip():
            arguments = pending.initial
        else:
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(
                    "Tool call %s (%s) arguments are not valid JSON: %.200s",
                    call_id, pending.name, raw,
                )
                parsed = {}
            arguments = parsed if isinstance(parsed, dict) else {}
        return ToolCallComplete(call_id, pending.name, arguments, pending.server_side)

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._pending


# ── Rate-limit header parsing ───────────────────────────────


def _int_header(headers: Mapping[str, str], key: str) -> int | None:
    value = headers.get(key)
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def parse_retry_after(headers: Mapping[str, str], now: datetime | None = None) -> float | None:
    """Seconds until the provider accepts requests again, if the headers say.

    Prefers ``retry-after`` (seconds); falls back to the RFC 3339
    ``anthropic-ratelimit-requests-reset`` timestamp.
    """
    retry_after = headers.get("retry-after")
    if retry_after:
        try:
            return max(float(retry_after), 0.0)
        except ValueError:
            pass

    reset = headers.get("anthropic-ratelimit-requests-reset")
    if reset:
        try:
            reset_at = datetime.fromisoformat(reset.replace("Z", "+00:00"))
        except ValueError:
            return None
        now = now or datetime.now(timezone.utc)
        return max((reset_at - now).total_seconds(), 0.0)
    return None


def _headers_of(exc: anthropic.APIStatusError) -> Mapping[str, str]:
    response = getattr(exc, "response", None)
    return response.headers if response is not None else {}


def to_rate_limit_error(exc: anthropic.APIStatusError) -> ProviderRateLimitError:
    """Tag a provider throttling response so the Rate-Limit Controller sees it."""
    headers = _headers_of(exc)
    overloaded = exc.status_code == _OVERLOADED_STATUS
    return ProviderRateLimitError(
        "Provider is overloaded" if overloaded else "Rate limit exceeded during generation",
        retry_after=parse_retry_after(headers),
        remaining=_int_header(headers, "anthropic-ratelimit-requests-remaining"),
        limit=_int_header(headers, "anthropic-ratelimit-requests-limit"),
        status_code=exc.status_code,
    )


def is_rate_limit_sufficient(status: RateLimitStatus, min_remaining: int) -> bool:
    if status.status == "exceeded":
        return False
    if status.remaining is not None and status.remaining < min_remaining:
        return False
    return True


# ── Driver interface ────────────────────────────────────────


class ConversationDriver(ABC):
    """Capability: submit a conversation + tools, receive a stream of turn events."""

    @abstractmethod
    def run_turn(
        self,
        history: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        system: str,
        *,
        model: str,
        max_tokens: int,
        tool_choice: dict[str, Any] | None = None,
    ) -> AsyncIterator[TurnEvent]:
        ...

    async def probe_rate_limit(self) -> RateLimitStatus:
        """Pre-flight capacity check.  Drivers without a provider are always ok."""
        return RateLimitStatus(status="ok", message="Rate limits OK. Ready to generate.")


# ── Anthropic implementation ────────────────────────────────


class AnthropicService(ConversationDriver):
    """Streaming wrapper around the Anthropic Messages API for tool-use turns."""

    def __init__(self, client: anthropic.AsyncAnthropic | None = None):
        settings = get_settings()
        self.client = client or anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key or None)
        self._probe_model = settings.planning_model
        self._min_remaining = settings.min_remaining_requests

    async def run_turn(
        self,
        history: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        system: str,
        *,
        model: str,
        max_tokens: int,
        tool_choice: dict[str, Any] | None = None,
    ) -> AsyncIterator[TurnEvent]:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": history,
            "system": [{"type": "text", "text": system, "cache_control": {"type": "ephemeral"}}],
        }
        if tools:
            kwargs["tools"] = tools
        if tool_choice:
            kwargs["tool_choice"] = tool_choice

        async with llm_slot():
            try:
                async with await self.client.messages.create(**kwargs, stream=True) as stream:
                    async with aclosing(self._translate(stream)) as events:
                        async for event in events:
                            yield event
            except anthropic.RateLimitError as exc:
                raise to_rate_limit_error(exc) from exc
            except anthropic.APIStatusError as exc:
                if exc.status_code == _OVERLOADED_STATUS:
                    raise to_rate_limit_error(exc) from exc
                raise

    async def _translate(self, stream: AsyncIterator[Any]) -> AsyncIterator[TurnEvent]:
        """Map raw Messages stream events onto turn events."""
        assembler = ToolCallAssembler()
        blocks: dict[int, dict[str, Any]] = {}
        call_ids: dict[int, str] = {}
        stop_reason: str | None = None

        async for event in stream:
            etype = getattr(event, "type", None)

            if etype == "content_block_start":
                block = event.content_block
                if block.type == "text":
                    blocks[event.index] = {"type": "text", "text": getattr(block, "text", "") or ""}
                elif block.type in ("tool_use", "server_tool_use"):
                    server_side = block.type == "server_tool_use"
                    call_ids[event.index] = block.id
                    blocks[event.index] = {"type": block.type, "id": block.id, "name": block.name, "input": {}}
                    initial = getattr(block, "input", None)
                    assembler.start(
                        block.id,
                        block.name,
                        server_side=server_side,
                        initial=initial if isinstance(initial, dict) else None,
                    )
                    yield ToolCallStart(block.id, block.name, server_side)
                else:
                    # web_search_tool_result and friends: provider-side only
                    blocks[event.index] = {"type": block.type}

            elif etype == "content_block_delta":
                delta = event.delta
                if delta.type == "text_delta":
                    block = blocks.setdefault(event.index, {"type": "text", "text": ""})
                    block["text"] = block.get("text", "") + delta.text
                    yield TextDelta(delta.text)
                elif delta.type == "input_json_delta":
                    call_id = call_ids.get(event.index)
                    if call_id is not None:
                        assembler.append(call_id, delta.partial_json)
                        yield ToolCallArgDelta(call_id, delta.partial_json)

            elif etype == "content_block_stop":
                call_id = call_ids.get(event.index)
                if call_id is not None and call_id in assembler:
                    complete = assembler.finish(call_id)
                    blocks[event.index]["input"] = complete.arguments
                    yield complete

            elif etype == "message_delta":
                stop_reason = getattr(event.delta, "stop_reason", None) or stop_reason

        # History keeps text and client tool calls; server search blocks are heavy and
        # already accounted for by the provider.
        content = [
            blocks[i]
            for i in sorted(blocks)
            if (blocks[i]["type"] == "text" and blocks[i].get("text"))
            or blocks[i]["type"] == "tool_use"
        ]
        yield TurnComplete(stop_reason, content)

    async def probe_rate_limit(self) -> RateLimitStatus:
        """Probe capacity with a ``count_tokens`` call (no generation quota used)."""
        try:
            async with llm_slot():
                raw = await self.client.messages.with_raw_response.count_tokens(
                    model=self._probe_model,
                    messages=[{"role": "user", "content": "ping"}],
                )
        except anthropic.RateLimitError as exc:
            err = to_rate_limit_error(exc)
            reset_in = round(err.retry_after) if err.retry_after is not None else None
            return RateLimitStatus(
                status="exceeded",
                remaining=err.remaining,
                limit=err.limit,
                reset_in=reset_in,
                message=f"Rate limit exceeded. Resets in {reset_in or 0}s.",
            )
        except anthropic.APIStatusError as exc:
            if exc.status_code == _OVERLOADED_STATUS:
                return RateLimitStatus(
                    status="exceeded",
                    message="API is currently overloaded. Please try again in a few minutes.",
                )
            raise

        remaining = _int_header(raw.headers, "anthropic-ratelimit-requests-remaining")
        limit = _int_header(raw.headers, "anthropic-ratelimit-requests-limit")
        if remaining is not None and remaining < self._min_remaining:
            return RateLimitStatus(
                status="low",
                remaining=remaining,
                limit=limit,
                message=f"Only {remaining}/{limit} requests remaining.",
            )
        return RateLimitStatus(
            status="ok",
            remaining=remaining,
            limit=limit,
            message="Rate limits OK. Ready to generate.",
        )


# ── Module-level singleton ───────────────────────────────────

_driver: ConversationDriver | None = None


def get_conversation_driver() -> ConversationDriver:
    """Shared Anthropic-backed driver (one HTTP pool per worker)."""
    global _driver
    if _driver is None:
        _driver = AnthropicService()
        logger.info("Initialized AnthropicService conversation driver")
    return _driver
