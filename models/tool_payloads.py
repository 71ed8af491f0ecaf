"""Typed tool-call payloads — one tagged variant per registered tool.

The model's tool arguments arrive as loose JSON.  ``parse_tool_call`` turns
them into exactly one of the ``*Call`` variants below (discriminated on the
tool name) or raises :class:`ToolPayloadError`, so the Generation Session
matches on concrete types instead of poking at dicts.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from errors.exceptions import StepValidationError, ToolPayloadError
from models.base import CamelModel
from models.syllabind import REQUIRED_STEP_TYPES, StepDraft, WeekPlan

logger = logging.getLogger(__name__)

PLAN_CURRICULUM = "plan_curriculum"
FINALIZE_WEEK = "finalize_week"
WEB_SEARCH = "web_search"
PROVIDE_URLS = "provide_urls"


# ── Tool inputs ─────────────────────────────────────────────


class PlanCurriculumInput(CamelModel):
    weeks: list[WeekPlan]

    @field_validator("weeks", mode="before")
    @classmethod
    def drop_malformed_weeks(cls, value: Any) -> Any:
        """Validate entries one by one; a malformed entry is ignored, not fatal."""
        if not isinstance(value, list):
            return value
        plans: list[WeekPlan] = []
        for raw in value:
            try:
                plans.append(WeekPlan.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "[PlanCurriculum] Ignoring malformed week entry %.200r: %d error(s)",
                    raw, exc.error_count(),
                )
        return plans

    def normalized(self, duration_weeks: int) -> list[WeekPlan]:
        """Exactly one plan per index ``1..duration_weeks``.

        Out-of-range entries are ignored, the first entry wins on duplicate
        indices, and missing indices get an empty title/description.
        """
        by_index: dict[int, WeekPlan] = {}
        for plan in self.weeks:
            if not 1 <= plan.week_index <= duration_weeks:
                logger.warning("[PlanCurriculum] Ignoring out-of-range week %d", plan.week_index)
                continue
            by_index.setdefault(plan.week_index, plan)
        return [
            by_index.get(i) or WeekPlan(week_index=i)
            for i in range(1, duration_weeks + 1)
        ]


class FinalizeWeekInput(CamelModel):
    week_index: int | None = None
    title: str | None = None
    description: str | None = None
    steps: list[StepDraft]


class WebSearchInput(CamelModel):
    query: str = ""


class UrlFix(CamelModel):
    step_id: int
    url: str


class ProvideUrlsInput(CamelModel):
    urls: list[UrlFix] = Field(default_factory=list)


# ── Tagged variants ─────────────────────────────────────────


class PlanCurriculumCall(BaseModel):
    name: Literal["plan_curriculum"]
    call_id: str
    input: PlanCurriculumInput


class FinalizeWeekCall(BaseModel):
    name: Literal["finalize_week"]
    call_id: str
    input: FinalizeWeekInput


class WebSearchCall(BaseModel):
    name: Literal["web_search"]
    call_id: str
    input: WebSearchInput
    server_side: bool = True


class ProvideUrlsCall(BaseModel):
    name: Literal["provide_urls"]
    call_id: str
    input: ProvideUrlsInput


ToolCall = Annotated[
    Union[PlanCurriculumCall, FinalizeWeekCall, WebSearchCall, ProvideUrlsCall],
    Field(discriminator="name"),
]

_TOOL_CALL_ADAPTER: TypeAdapter[ToolCall] = TypeAdapter(ToolCall)

TOOL_NAMES = frozenset({PLAN_CURRICULUM, FINALIZE_WEEK, WEB_SEARCH, PROVIDE_URLS})


def _summarize_validation(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors()[:5]:
        # Drop the "input" wrapper from the location path
        loc = ".".join(str(p) for p in err["loc"][1:]) or "arguments"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_tool_call(
    name: str,
    call_id: str,
    arguments: dict[str, Any],
    *,
    server_side: bool = False,
) -> ToolCall:
    """Validate raw tool arguments into their tagged variant.

    Raises:
        ToolPayloadError: unknown tool name or arguments that fail the schema.
    """
    if name not in TOOL_NAMES:
        raise ToolPayloadError(name, "unknown tool")

    payload: dict[str, Any] = {"name": name, "call_id": call_id, "input": arguments}
    if name == WEB_SEARCH:
        payload["server_side"] = server_side
    try:
        return _TOOL_CALL_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise ToolPayloadError(name, _summarize_validation(exc)) from exc


def validate_week_steps(steps: list[StepDraft]) -> None:
    """Enforce the weekly shape: three readings, then one exercise.

    Raises:
        StepValidationError: wrong count or ordering of step types.
    """
    types = [s.type.value for s in steps]
    if len(steps) != len(REQUIRED_STEP_TYPES):
        raise StepValidationError(
            f"expected exactly {len(REQUIRED_STEP_TYPES)} steps, got {len(steps)}",
            types,
        )
    if tuple(s.type for s in steps) != REQUIRED_STEP_TYPES:
        raise StepValidationError(
            "steps must be 3 readings followed by 1 exercise, got " + ", ".join(types),
            types,
        )
