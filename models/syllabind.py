"""Syllabind domain models — persisted rows and in-flight generation drafts.

``Syllabus`` / ``Week`` / ``Step`` mirror the rows owned by the storage
layer.  ``WeekPlan`` and ``StepDraft`` are what the model produces before
anything is persisted.
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from models.base import CamelModel


class StepType(str, Enum):
    READING = "reading"
    EXERCISE = "exercise"


class SyllabusStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    PUBLISHED = "published"


# Domain rule: every finalized week is three readings followed by one exercise.
REQUIRED_STEP_TYPES: tuple[StepType, ...] = (
    StepType.READING,
    StepType.READING,
    StepType.READING,
    StepType.EXERCISE,
)


# ── Persisted rows ──────────────────────────────────────────


class User(CamelModel):
    username: str
    is_creator: bool = False
    is_admin: bool = False


class Syllabus(CamelModel):
    id: int
    title: str = ""
    description: str = ""
    audience_level: str = ""
    duration_weeks: int = 0
    status: SyllabusStatus = SyllabusStatus.DRAFT
    creator_id: str = ""

    def has_complete_basics(self) -> bool:
        return bool(
            self.title and self.description and self.audience_level and self.duration_weeks
        )


class Week(CamelModel):
    id: int
    syllabus_id: int
    index: int
    title: str = ""
    description: str = ""


class Step(CamelModel):
    id: int
    week_id: int
    position: int
    type: StepType
    title: str
    url: str | None = None
    note: str | None = None
    author: str | None = None
    creation_date: str | None = None
    media_type: str | None = None
    prompt_text: str | None = None
    estimated_minutes: int | None = None


class WeekSnapshot(CamelModel):
    """A week plus its steps, as re-read from storage for reconciliation."""

    index: int
    title: str = ""
    description: str = ""
    steps: list[Step] = Field(default_factory=list)


# ── Generation drafts ───────────────────────────────────────


class WeekPlan(CamelModel):
    """Planning Phase output — one per week, indices contiguous from 1."""

    week_index: int
    title: str = ""
    description: str = ""


class StepDraft(CamelModel):
    """One step as declared by ``finalize_week``, before persistence."""

    type: StepType
    title: str = Field(min_length=1)
    url: str | None = None
    note: str | None = None
    author: str | None = None
    creation_date: str | None = None
    media_type: str | None = None
    prompt_text: str | None = None
    estimated_minutes: float | None = None

    def minutes_or(self, default: int) -> int:
        if self.estimated_minutes and self.estimated_minutes > 0:
            return max(1, round(self.estimated_minutes))
        return default
