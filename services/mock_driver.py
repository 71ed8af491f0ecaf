"""Deterministic conversation driver for ``?mock=true`` sockets.

Speaks the same turn-event protocol as :class:`AnthropicService` without
any provider call, so the full session pipeline (persistence, streaming,
repair, reconciliation) can be exercised end to end in integration tests
and demos.

Behaviour by toolset:
- planning: one ``plan_curriculum`` call covering every week.
- generation: one server-side ``web_search`` followed by ``finalize_week``
  with four fixture steps.
- repair: ``provide_urls`` for every ``stepId`` listed in the system prompt.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from itertools import count
from typing import Any, AsyncIterator

from models.tool_payloads import FINALIZE_WEEK, PLAN_CURRICULUM, PROVIDE_URLS, WEB_SEARCH
from services.anthropic_service import (
    ConversationDriver,
    TextDelta,
    ToolCallArgDelta,
    ToolCallComplete,
    ToolCallStart,
    TurnComplete,
    TurnEvent,
)

logger = logging.getLogger(__name__)

MOCK_STEPS: list[dict[str, Any]] = [
    {
        "type": "reading",
        "title": "Introduction to the Topic",
        "author": "Jane Smith",
        "url": "https://example.com/intro",
        "mediaType": "Blog/Article",
        "creationDate": "2021-03-14",
        "estimatedMinutes": 15,
        "note": "A foundational overview of key concepts.",
    },
    {
        "type": "reading",
        "title": "Deep Dive: Core Principles",
        "author": "Academic Press",
        "url": "https://example.com/principles",
        "mediaType": "Journal Article",
        "creationDate": "2019-09-01",
        "estimatedMinutes": 25,
        "note": "Scholarly analysis of the underlying theory.",
    },
    {
        "type": "reading",
        "title": "Practical Applications",
        "author": "John Doe",
        "url": "https://example.com/practical",
        "mediaType": "Youtube video",
        "creationDate": "2022-06-20",
        "estimatedMinutes": 20,
        "note": "Real-world examples and case studies.",
    },
    {
        "type": "exercise",
        "title": "Reflection Exercise",
        "promptText": (
            "Based on this week's readings: identify 3 key concepts, write a "
            "200-word reflection, and share it with a peer for feedback."
        ),
        "estimatedMinutes": 30,
    },
]

_WEEK_RE = re.compile(r"Week (\d+)")
_STEP_ID_RE = re.compile(r"stepId: (\d+)")


def _tool_names(tools: list[dict[str, Any]]) -> set[str]:
    return {t.get("name", "") for t in tools}


def _first_user_text(history: list[dict[str, Any]]) -> str:
    for message in history:
        if message.get("role") == "user" and isinstance(message.get("content"), str):
            return message["content"]
    return ""


class FixtureConversationDriver(ConversationDriver):
    """Scripted driver: same inputs, same outputs, no network."""

    def __init__(self, duration_weeks: int, *, delay: float = 0.0) -> None:
        self.duration_weeks = duration_weeks
        self.delay = delay
        self._ids = count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_mock_{next(self._ids):04d}"

    async def _tool_call(
        self, name: str, arguments: dict[str, Any], *, server_side: bool = False
    ) -> AsyncIterator[TurnEvent]:
        call_id = self._next_id("srvtoolu" if server_side else "toolu")
        yield ToolCallStart(call_id, name, server_side)
        yield ToolCallArgDelta(call_id, json.dumps(arguments))
        yield ToolCallComplete(call_id, name, arguments, server_side)

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
        if self.delay:
            await asyncio.sleep(self.delay)

        names = _tool_names(tools)
        calls: list[tuple[str, dict[str, Any], bool]] = []

        if PLAN_CURRICULUM in names:
            weeks = [
                {
                    "weekIndex": i,
                    "title": f"Week {i}: Core Concepts",
                    "description": "Fundamental aspects of the topic with curated readings and a practical exercise.",
                }
                for i in range(1, self.duration_weeks + 1)
            ]
            calls.append((PLAN_CURRICULUM, {"weeks": weeks}, False))
        elif FINALIZE_WEEK in names:
            match = _WEEK_RE.search(_first_user_text(history))
            week_index = int(match.group(1)) if match else 1
            calls.append((WEB_SEARCH, {"query": f"best resources for week {week_index} topic"}, True))
            steps = [
                {**step, "title": f"{step['title']} (Week {week_index})"} for step in MOCK_STEPS
            ]
            calls.append((FINALIZE_WEEK, {"weekIndex": week_index, "steps": steps}, False))
        elif PROVIDE_URLS in names:
            urls = [
                {"stepId": int(sid), "url": f"https://example.com/resources/{sid}"}
                for sid in _STEP_ID_RE.findall(system)
            ]
            calls.append((PROVIDE_URLS, {"urls": urls}, False))
        else:
            yield TextDelta("(mock) nothing to do")
            yield TurnComplete("end_turn", [{"type": "text", "text": "(mock) nothing to do"}])
            return

        content: list[dict[str, Any]] = []
        for name, arguments, server_side in calls:
            async for event in self._tool_call(name, arguments, server_side=server_side):
                if isinstance(event, ToolCallComplete) and not server_side:
                    content.append({
                        "type": "tool_use", "id": event.call_id, "name": name, "input": arguments,
                    })
                yield event

        logger.debug("[MockDriver] Turn with %s", [c[0] for c in calls])
        yield TurnComplete("tool_use", content)
