"""WebSocket frame models for the generation protocol.

Every server→client frame is ``{"type": <EventType>, "data": {...}}``.
Each payload model is bound to exactly one :class:`EventType`, so the set
of frames the session can emit is closed and checked at construction time.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any, ClassVar

from pydantic import Field

from models.base import CamelModel
from models.syllabind import Step, WeekPlan, WeekSnapshot


class EventType(str, Enum):
    PLANNING_STARTED = "planning_started"
    CURRICULUM_PLANNED = "curriculum_planned"
    WEEK_STARTED = "week_started"
    SEARCHING = "searching"
    WEEK_INFO = "week_info"
    STEP_COMPLETED = "step_completed"
    WEEK_COMPLETED = "week_completed"
    WEEK_REGENERATION_COMPLETE = "week_regeneration_complete"
    URL_REPAIR_STARTED = "url_repair_started"
    STEP_URL_REPAIRED = "step_url_repaired"
    URL_REPAIR_COMPLETE = "url_repair_complete"
    RATE_LIMIT_WAIT = "rate_limit_wait"
    RATE_LIMIT_STATUS = "rate_limit_status"
    GENERATION_COMPLETE = "generation_complete"
    GENERATION_ERROR = "generation_error"
    SYLLABUS_SNAPSHOT = "syllabus_snapshot"
    ERROR = "error"


class CloseCode(IntEnum):
    NORMAL = 1000
    NO_STATUS = 1005  # Client closed without a code — treated as cancellation
    INTERNAL_ERROR = 1011
    INVALID_REQUEST = 4400
    UNAUTHORIZED = 4401
    FORBIDDEN = 4403
    NOT_FOUND = 4404


# Closes that mean "the user stopped it", never surfaced as errors.
CANCELLATION_CLOSE_CODES = frozenset({CloseCode.NORMAL, CloseCode.NO_STATUS})


class EventPayload(CamelModel):
    """Base for frame payloads; subclasses pin their ``event`` type."""

    event: ClassVar[EventType]

    def to_frame(self) -> dict[str, Any]:
        return {"type": self.event.value, "data": self.to_wire()}


# ── Planning ────────────────────────────────────────────────


class PlanningStarted(EventPayload):
    event = EventType.PLANNING_STARTED
    duration_weeks: int


class CurriculumPlanned(EventPayload):
    event = EventType.CURRICULUM_PLANNED
    weeks: list[WeekPlan]


# ── Week fill ───────────────────────────────────────────────


class WeekStarted(EventPayload):
    event = EventType.WEEK_STARTED
    week_index: int


class Searching(EventPayload):
    event = EventType.SEARCHING
    query: str
    week_index: int | None = None


class WeekInfo(EventPayload):
    event = EventType.WEEK_INFO
    week_index: int
    title: str
    description: str


class StepCompleted(EventPayload):
    event = EventType.STEP_COMPLETED
    week_index: int
    step_index: int
    step: Step


class CompletedWeek(CamelModel):
    week_index: int
    title: str
    description: str
    steps: list[Step] = Field(default_factory=list)


class WeekCompleted(EventPayload):
    event = EventType.WEEK_COMPLETED
    week_index: int
    week: CompletedWeek


class WeekRegenerationComplete(EventPayload):
    event = EventType.WEEK_REGENERATION_COMPLETE
    syllabus_id: int
    week_index: int


# ── URL repair ──────────────────────────────────────────────


class UrlRepairStarted(EventPayload):
    event = EventType.URL_REPAIR_STARTED
    count: int


class StepUrlRepaired(EventPayload):
    event = EventType.STEP_URL_REPAIRED
    step_id: int
    url: str


class UrlRepairComplete(EventPayload):
    event = EventType.URL_REPAIR_COMPLETE
    repaired: int
    total: int
    error: bool | None = None


# ── Rate limiting ───────────────────────────────────────────


class RateLimitWait(EventPayload):
    event = EventType.RATE_LIMIT_WAIT
    reset_in: int


class RateLimitStatus(EventPayload):
    """Pre-flight probe result; ``status`` is ``ok``, ``low`` or ``exceeded``."""

    event = EventType.RATE_LIMIT_STATUS
    status: str
    message: str
    remaining: int | None = None
    limit: int | None = None
    reset_in: int | None = None


# ── Terminal / errors ───────────────────────────────────────


class GenerationComplete(EventPayload):
    event = EventType.GENERATION_COMPLETE
    syllabus_id: int
    failed_weeks: list[int] | None = None


class GenerationErrorEvent(EventPayload):
    event = EventType.GENERATION_ERROR
    message: str
    week_index: int | None = None
    is_rate_limit: bool | None = None
    reset_in: int | None = None
    details: str | None = None


class SyllabusSnapshot(EventPayload):
    event = EventType.SYLLABUS_SNAPSHOT
    syllabus_id: int
    status: str
    weeks: list[WeekSnapshot]


class ErrorEvent(EventPayload):
    event = EventType.ERROR
    message: str
