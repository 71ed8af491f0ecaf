"""Shared pytest fixtures for generation tests.

Provides:
- ``settings``: Settings built from a test environment (no step delay, fast
  countdown ticks, URL validation and pre-flight probe off)
- ``store``: fresh InMemorySyllabindStore seeded with a creator and two syllabi
- ``events``: an EventLog to pass as a session's ``emit``
- ``session_cookie``: a signed session cookie for the seeded creator
"""

from __future__ import annotations

from urllib.parse import quote

import pytest

from config.settings import Settings, get_settings
from models.syllabind import SyllabusStatus, User
from services.auth import sign_session_id
from services.concurrency import reset_limits
from services.syllabind_store import InMemorySyllabindStore, set_syllabind_store
from tests.fakes import CREATOR, CREATOR_SESSION, TEST_SECRET, EventLog


@pytest.fixture(autouse=True)
def _fresh_limits():
    reset_limits()
    yield
    reset_limits()


@pytest.fixture
def settings(monkeypatch) -> Settings:
    """Process settings from a test environment; every ``get_settings()`` sees it."""
    monkeypatch.setenv("SESSION_SECRET", TEST_SECRET)
    monkeypatch.setenv("STEP_STREAM_DELAY", "0")
    monkeypatch.setenv("RATE_LIMIT_TICK_SECONDS", "0.01")
    monkeypatch.setenv("VALIDATE_URLS", "false")
    monkeypatch.setenv("PREFLIGHT_RATE_LIMIT_CHECK", "false")
    monkeypatch.setenv("ALLOW_MOCK_GENERATION", "true")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def store() -> InMemorySyllabindStore:
    """Fresh store — isolated per test, also installed as the process singleton."""
    s = InMemorySyllabindStore()
    s.add_user(User(username=CREATOR, is_creator=True), session_id=CREATOR_SESSION)
    s.add_user(User(username="grace", is_creator=True), session_id="sess-grace")
    s.add_user(User(username="learner"), session_id="sess-learner")
    s.add_syllabus(
        title="Intro to Stoicism",
        description="Ancient philosophy for modern life.",
        audience_level="Beginner",
        duration_weeks=2,
        status=SyllabusStatus.GENERATING,
        creator_id=CREATOR,
    )
    s.add_syllabus(
        title="Meditations, Slowly",
        description="One week with Marcus Aurelius.",
        audience_level="Intermediate",
        duration_weeks=1,
        status=SyllabusStatus.GENERATING,
        creator_id=CREATOR,
    )
    set_syllabind_store(s)
    yield s
    set_syllabind_store(None)


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def session_cookie() -> str:
    return quote(sign_session_id(CREATOR_SESSION, TEST_SECRET), safe="")

