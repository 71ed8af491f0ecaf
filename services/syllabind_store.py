"""Syllabind storage adapter — the only path through which generation mutates rows.

Provides an abstract interface over the relational store (users, login
sessions, syllabi, weeks, steps) with an in-memory implementation used by
the service in development and by the test-suite.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from itertools import count

from models.syllabind import Step, StepDraft, Syllabus, SyllabusStatus, User, Week, WeekSnapshot

logger = logging.getLogger(__name__)


# ── Abstract Interface ───────────────────────────────────────


class SyllabindStore(ABC):
    """Abstract syllabind store — implement for different backends."""

    # -- users ---------------------------------------------------------------

    @abstractmethod
    async def get_user(self, username: str) -> User | None:
        ...

    @abstractmethod
    async def get_user_by_session(self, session_id: str) -> User | None:
        """Resolve a login session id (from the signed cookie) to its user."""
        ...

    # -- syllabi -------------------------------------------------------------

    @abstractmethod
    async def get_syllabus(self, syllabus_id: int) -> Syllabus | None:
        ...

    @abstractmethod
    async def update_syllabus_status(self, syllabus_id: int, status: SyllabusStatus) -> Syllabus:
        ...

    # -- weeks ---------------------------------------------------------------

    @abstractmethod
    async def create_week(
        self, syllabus_id: int, index: int, title: str = "", description: str = ""
    ) -> Week:
        """Create a week row.  Raises ``ValueError`` if the index already exists."""
        ...

    @abstractmethod
    async def update_week(
        self, week_id: int, *, title: str | None = None, description: str | None = None
    ) -> Week:
        ...

    @abstractmethod
    async def list_weeks(self, syllabus_id: int) -> list[Week]:
        """Weeks ordered by index."""
        ...

    @abstractmethod
    async def delete_weeks(self, syllabus_id: int) -> int:
        """Delete all weeks (and their steps).  Returns count removed."""
        ...

    @abstractmethod
    async def delete_week(self, week_id: int) -> None:
        """Delete one week and its steps."""
        ...

    # -- steps ---------------------------------------------------------------

    @abstractmethod
    async def create_step(self, week_id: int, position: int, draft: StepDraft) -> Step:
        ...

    @abstractmethod
    async def list_steps(self, week_id: int) -> list[Step]:
        """Steps ordered by position."""
        ...

    @abstractmethod
    async def delete_steps(self, week_id: int) -> int:
        ...

    @abstractmethod
    async def update_step_url(self, step_id: int, url: str) -> Step | None:
        ...

    # -- derived -------------------------------------------------------------

    async def get_week_by_index(self, syllabus_id: int, index: int) -> Week | None:
        for week in await self.list_weeks(syllabus_id):
            if week.index == index:
                return week
        return None

    async def get_snapshot(self, syllabus_id: int) -> list[WeekSnapshot]:
        """Authoritative weeks + steps, re-read for client reconciliation."""
        snapshot = []
        for week in await self.list_weeks(syllabus_id):
            steps = await self.list_steps(week.id)
            snapshot.append(WeekSnapshot(
                index=week.index,
                title=week.title,
                description=week.description,
                steps=steps,
            ))
        return snapshot


# ── In-Memory Implementation ────────────────────────────────


class InMemorySyllabindStore(SyllabindStore):
    """Dict-backed store.  Suitable for a single worker and for tests."""

    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._sessions: dict[str, str] = {}  # session id → username
        self._syllabi: dict[int, Syllabus] = {}
        self._weeks: dict[int, Week] = {}
        self._steps: dict[int, Step] = {}
        self._syllabus_ids = count(1)
        self._week_ids = count(1)
        self._step_ids = count(1)

    # -- seeding -------------------------------------------------------------

    def add_user(self, user: User, session_id: str | None = None) -> User:
        self._users[user.username] = user
        if session_id:
            self._sessions[session_id] = user.username
        return user

    def add_syllabus(self, syllabus: Syllabus | None = None, **fields) -> Syllabus:
        if syllabus is None:
            syllabus = Syllabus(id=next(self._syllabus_ids), **fields)
        self._syllabi[syllabus.id] = syllabus
        return syllabus

    # -- users ---------------------------------------------------------------

    async def get_user(self, username: str) -> User | None:
        return self._users.get(username)

    async def get_user_by_session(self, session_id: str) -> User | None:
        username = self._sessions.get(session_id)
        return self._users.get(username) if username else None

    # -- syllabi -------------------------------------------------------------

    async def get_syllabus(self, syllabus_id: int) -> Syllabus | None:
        return self._syllabi.get(syllabus_id)

    async def update_syllabus_status(self, syllabus_id: int, status: SyllabusStatus) -> Syllabus:
        syllabus = self._syllabi.get(syllabus_id)
        if syllabus is None:
            raise KeyError(f"Syllabus {syllabus_id} not found")
        updated = syllabus.model_copy(update={"status": status})
        self._syllabi[syllabus_id] = updated
        return updated

    # -- weeks ---------------------------------------------------------------

    async def create_week(
        self, syllabus_id: int, index: int, title: str = "", description: str = ""
    ) -> Week:
        if any(w.syllabus_id == syllabus_id and w.index == index for w in self._weeks.values()):
            raise ValueError(f"Week {index} already exists for syllabus {syllabus_id}")
        week = Week(
            id=next(self._week_ids),
            syllabus_id=syllabus_id,
            index=index,
            title=title,
            description=description,
        )
        self._weeks[week.id] = week
        return week

    async def update_week(
        self, week_id: int, *, title: str | None = None, description: str | None = None
    ) -> Week:
        week = self._weeks.get(week_id)
        if week is None:
            raise KeyError(f"Week {week_id} not found")
        updates = {}
        if title is not None:
            updates["title"] = title
        if description is not None:
            updates["description"] = description
        updated = week.model_copy(update=updates)
        self._weeks[week_id] = updated
        return updated

    async def list_weeks(self, syllabus_id: int) -> list[Week]:
        return sorted(
            (w for w in self._weeks.values() if w.syllabus_id == syllabus_id),
            key=lambda w: w.index,
        )

    async def delete_weeks(self, syllabus_id: int) -> int:
        week_ids = [w.id for w in self._weeks.values() if w.syllabus_id == syllabus_id]
        for week_id in week_ids:
            await self.delete_steps(week_id)
            del self._weeks[week_id]
        if week_ids:
            logger.info("Deleted %d weeks for syllabus %d", len(week_ids), syllabus_id)
        return len(week_ids)

    async def delete_week(self, week_id: int) -> None:
        await self.delete_steps(week_id)
        self._weeks.pop(week_id, None)

    # -- steps ---------------------------------------------------------------

    async def create_step(self, week_id: int, position: int, draft: StepDraft) -> Step:
        if week_id not in self._weeks:
            raise KeyError(f"Week {week_id} not found")
        step = Step(
            id=next(self._step_ids),
            week_id=week_id,
            position=position,
            type=draft.type,
            title=draft.title,
            url=draft.url,
            note=draft.note,
            author=draft.author,
            creation_date=draft.creation_date,
            media_type=draft.media_type,
            prompt_text=draft.prompt_text,
            estimated_minutes=(
                round(draft.estimated_minutes) if draft.estimated_minutes is not None else None
            ),
        )
        self._steps[step.id] = step
        return step

    async def list_steps(self, week_id: int) -> list[Step]:
        return sorted(
            (s for s in self._steps.values() if s.week_id == week_id),
            key=lambda s: s.position,
        )

    async def delete_steps(self, week_id: int) -> int:
        step_ids = [s.id for s in self._steps.values() if s.week_id == week_id]
        for step_id in step_ids:
            del self._steps[step_id]
        return len(step_ids)

    async def update_step_url(self, step_id: int, url: str) -> Step | None:
        step = self._steps.get(step_id)
        if step is None:
            return None
        updated = step.model_copy(update={"url": url})
        self._steps[step_id] = updated
        return updated


# ── Module-level Singleton ───────────────────────────────────

_store: SyllabindStore | None = None


def get_syllabind_store() -> SyllabindStore:
    """Get the singleton syllabind store instance."""
    global _store
    if _store is None:
        _store = InMemorySyllabindStore()
        logger.info("Initialized InMemorySyllabindStore")
    return _store


def set_syllabind_store(store: SyllabindStore | None) -> None:
    """Swap the singleton (tests, or a database-backed store at startup)."""
    global _store
    _store = store
