"""Single-source tool registry with toolset classification.

All tools the generator may offer the model are declared here as pure
data and retrieved per phase via ``get_tools(TOOLSET_GENERATION)``.

Design:
- Each tool is a ``RegisteredTool`` with a JSON-schema input contract.
- A tool may belong to several toolsets (``web_search`` is in both the
  generation and repair sets).
- ``web_search`` is the provider's server-side tool: it has no schema here,
  only a type and a per-conversation ``max_uses`` budget.
- Nothing in this module executes a tool.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from models.tool_payloads import FINALIZE_WEEK, PLAN_CURRICULUM, PROVIDE_URLS, WEB_SEARCH

logger = logging.getLogger(__name__)

# ── Toolset names ───────────────────────────────────────────

TOOLSET_PLANNING = "planning"
TOOLSET_GENERATION = "generation"
TOOLSET_REPAIR = "repair"

ALL_TOOLSETS = [TOOLSET_PLANNING, TOOLSET_GENERATION, TOOLSET_REPAIR]

WEB_SEARCH_TOOL_TYPE = "web_search_20250305"

MEDIA_TYPES = ["Book", "Journal Article", "Youtube video", "Blog/Article", "Podcast"]


# ── Registry internals ──────────────────────────────────────


@dataclass
class RegisteredTool:
    """Metadata for a registered tool."""

    name: str
    toolsets: tuple[str, ...]
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    server_type: str | None = None  # Set for provider-executed tools

    @property
    def server_side(self) -> bool:
        return self.server_type is not None

    def to_definition(self, search_budget: int | None = None) -> dict[str, Any]:
        """Render in Anthropic Messages API ``tools=[...]`` format."""
        if self.server_type:
            definition: dict[str, Any] = {"type": self.server_type, "name": self.name}
            if search_budget is not None:
                definition["max_uses"] = search_budget
            return definition
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


# Module-level registry
_registry: dict[str, RegisteredTool] = {}


def register_tool(tool: RegisteredTool) -> RegisteredTool:
    unknown = [t for t in tool.toolsets if t not in ALL_TOOLSETS]
    if unknown:
        raise ValueError(f"Unknown toolset(s): {unknown!r}. Must be in {ALL_TOOLSETS}")
    _registry[tool.name] = tool
    return tool


# ── Tool definitions ────────────────────────────────────────

_STEP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"type": "string", "enum": ["reading", "exercise"]},
        "title": {"type": "string"},
        "url": {"type": "string", "description": "Required for readings; must come from web search"},
        "note": {"type": "string", "description": "1-2 sentence context for the learner"},
        "author": {"type": "string"},
        "creationDate": {"type": "string", "description": "YYYY-MM-DD"},
        "mediaType": {"type": "string", "enum": MEDIA_TYPES},
        "promptText": {"type": "string", "description": "Exercise instructions"},
        "estimatedMinutes": {"type": "number"},
    },
    "required": ["type", "title"],
}

register_tool(RegisteredTool(
    name=PLAN_CURRICULUM,
    toolsets=(TOOLSET_PLANNING,),
    description="Submit the full curriculum outline: one distinct title and description per week.",
    input_schema={
        "type": "object",
        "properties": {
            "weeks": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "weekIndex": {"type": "number"},
                        "title": {"type": "string"},
                        "description": {"type": "string"},
                    },
                    "required": ["weekIndex", "title", "description"],
                },
            },
        },
        "required": ["weeks"],
    },
))

register_tool(RegisteredTool(
    name=WEB_SEARCH,
    toolsets=(TOOLSET_GENERATION, TOOLSET_REPAIR),
    server_type=WEB_SEARCH_TOOL_TYPE,
))

register_tool(RegisteredTool(
    name=FINALIZE_WEEK,
    toolsets=(TOOLSET_GENERATION,),
    description=(
        "Finalize one week after gathering resources. Exactly 4 steps: "
        "3 readings followed by 1 exercise. Title and description are optional "
        "when they are already set."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "weekIndex": {"type": "number"},
            "title": {"type": "string"},
            "description": {"type": "string"},
            "steps": {"type": "array", "minItems": 4, "maxItems": 4, "items": _STEP_SCHEMA},
        },
        "required": ["weekIndex", "steps"],
    },
))

register_tool(RegisteredTool(
    name=PROVIDE_URLS,
    toolsets=(TOOLSET_REPAIR,),
    description="Provide URLs found for readings that were missing one.",
    input_schema={
        "type": "object",
        "properties": {
            "urls": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "stepId": {"type": "number"},
                        "url": {"type": "string"},
                    },
                    "required": ["stepId", "url"],
                },
            },
        },
        "required": ["urls"],
    },
))


# ── Public API ──────────────────────────────────────────────


def get_tools(toolset: str, search_budget: int | None = None) -> list[dict[str, Any]]:
    """Return Anthropic tool definitions for one toolset.

    Args:
        toolset: One of ``ALL_TOOLSETS``.
        search_budget: ``max_uses`` for the server-side web search tool.
    """
    if toolset not in ALL_TOOLSETS:
        raise ValueError(f"Unknown toolset: {toolset!r}")
    return [
        rt.to_definition(search_budget)
        for rt in _registry.values()
        if toolset in rt.toolsets
    ]


def get_tool(name: str) -> RegisteredTool | None:
    return _registry.get(name)


def get_tool_names(toolset: str | None = None) -> list[str]:
    """Return tool names, optionally filtered by toolset."""
    if toolset is None:
        return list(_registry.keys())
    return [rt.name for rt in _registry.values() if toolset in rt.toolsets]
