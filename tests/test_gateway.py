"""Tests for the generation socket gateway — routing, admission close codes, relay."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from agents.generation_session import GenerationMode
from api.generation_ws import (
    ConnectionState,
    GenerationGateway,
    ParsedRoute,
    check_week_in_range,
    parse_route,
)
from config.settings import get_settings
from errors.exceptions import GatewayRejection
from main import app
from models.syllabind import Syllabus, SyllabusStatus
from models.ws_events import ErrorEvent
from services.anthropic_service import get_conversation_driver
from services.auth import sign_session_id
from services.syllabind_store import get_syllabind_store
from tests.fakes import (
    ONE_WEEK_ID,
    STOICISM_ID,
    TEST_SECRET,
    ScriptedDriver,
    finalize_turn,
    plan_turn,
)


# ── parse_route ─────────────────────────────────────────────


def test_parse_full_generation_route():
    route = parse_route("/ws/generate-syllabind/12", {})
    assert route == ParsedRoute(12, GenerationMode.FULL_GENERATION)
    assert route.target().week_index is None


def test_parse_regeneration_route_with_mock():
    route = parse_route("/ws/regenerate-week/12/3", {"mock": "true"})
    assert route.mode is GenerationMode.SINGLE_WEEK_REGENERATION
    assert (route.syllabus_id, route.week_index, route.mock) == (12, 3, True)
    assert route.target().week_index == 3


def test_mock_flag_requires_exact_true():
    assert not parse_route("/ws/generate-syllabind/1", {"mock": "1"}).mock


def test_regeneration_route_without_week_index_has_no_target():
    with pytest.raises(ValueError):
        ParsedRoute(1, GenerationMode.SINGLE_WEEK_REGENERATION).target()


@pytest.mark.parametrize(
    "path, message",
    [
        ("/ws/generate-syllabind/abc", "Missing syllabus ID in WebSocket URL."),
        ("/ws/generate-syllabind/0", "Missing syllabus ID in WebSocket URL."),
        ("/ws/generate-syllabind/", "Missing syllabus ID in WebSocket URL."),
        ("/ws/regenerate-week/x/1", "Missing syllabus ID in WebSocket URL."),
        ("/ws/regenerate-week/1/zero", "Invalid week index."),
        ("/ws/regenerate-week/1/0", "Invalid week index."),
        ("/ws/something-else/1", "Unknown generation route."),
    ],
)
def test_parse_route_rejections(path, message):
    with pytest.raises(GatewayRejection) as exc_info:
        parse_route(path, {})
    assert exc_info.value.close_code == 4400
    assert str(exc_info.value) == message


def test_week_range_check():
    syllabus = Syllabus(id=1, duration_weeks=4)
    check_week_in_range(ParsedRoute(1, GenerationMode.SINGLE_WEEK_REGENERATION, 4), syllabus)
    with pytest.raises(GatewayRejection) as exc_info:
        check_week_in_range(ParsedRoute(1, GenerationMode.SINGLE_WEEK_REGENERATION, 5), syllabus)
    assert exc_info.value.close_code == 4400


# ── Sockets over TestClient ─────────────────────────────────


@pytest.fixture
def driver():
    return ScriptedDriver()


@pytest.fixture
def client(settings, store, driver):
    app.dependency_overrides[get_syllabind_store] = lambda: store
    app.dependency_overrides[get_conversation_driver] = lambda: driver
    yield TestClient(app)
    app.dependency_overrides.clear()


def _cookie(session_id: str, secret: str = TEST_SECRET) -> dict[str, str]:
    return {"cookie": "connect.sid=" + quote(sign_session_id(session_id, secret), safe="")}


def _collect(client, url, headers=None):
    """Read frames until the server closes; return (frames, close code)."""
    frames = []
    if headers is None:
        headers = _cookie("sess-ada")
    with client.websocket_connect(url, headers=headers) as ws:
        while True:
            try:
                frames.append(ws.receive_json())
            except WebSocketDisconnect as exc:
                return frames, exc.code


def test_missing_cookie_closes_4401(client):
    frames, code = _collect(client, f"/ws/generate-syllabind/{STOICISM_ID}", headers={})
    assert code == 4401
    assert frames == [{"type": "error", "data": {"message": "Authentication failed. Please log in again."}}]


def test_bad_signature_closes_4401(client):
    _, code = _collect(
        client, f"/ws/generate-syllabind/{STOICISM_ID}", headers=_cookie("sess-ada", "wrong secret")
    )
    assert code == 4401


def test_malformed_id_closes_4400(client):
    frames, code = _collect(client, "/ws/generate-syllabind/abc")
    assert code == 4400
    assert frames[0]["data"]["message"] == "Missing syllabus ID in WebSocket URL."


def test_unknown_syllabus_closes_4404(client):
    frames, code = _collect(client, "/ws/generate-syllabind/99")
    assert code == 4404
    assert frames[0]["data"]["message"] == "Syllabus not found."


def test_non_owner_closes_4403_and_touches_nothing(client, store, driver):
    frames, code = _collect(
        client, f"/ws/generate-syllabind/{STOICISM_ID}", headers=_cookie("sess-grace")
    )

    assert code == 4403
    assert frames[0]["type"] == "error"
    assert driver.calls == []
    assert store._weeks == {}
    assert store._syllabi[STOICISM_ID].status is SyllabusStatus.GENERATING


def test_week_out_of_range_closes_4400(client):
    frames, code = _collect(client, f"/ws/regenerate-week/{STOICISM_ID}/3")
    assert code == 4400
    assert "outside 1-2" in frames[0]["data"]["message"]


def test_mock_disabled_closes_4400(client, settings):
    app.dependency_overrides[get_settings] = lambda: settings.model_copy(
        update={"allow_mock_generation": False}
    )
    frames, code = _collect(client, f"/ws/generate-syllabind/{STOICISM_ID}?mock=true")
    assert code == 4400
    assert frames[0]["data"]["message"] == "Mock generation is disabled."


def test_mock_generation_streams_full_run(client, store, driver):
    frames, code = _collect(client, f"/ws/generate-syllabind/{STOICISM_ID}?mock=true")

    assert code == 1000
    per_week = ["week_started", "searching", "week_info"] + ["step_completed"] * 4 + ["week_completed"]
    assert [f["type"] for f in frames] == (
        ["planning_started", "curriculum_planned"]
        + per_week
        + per_week
        + ["generation_complete", "syllabus_snapshot"]
    )
    planned = frames[1]["data"]["weeks"]
    assert [w["weekIndex"] for w in planned] == [1, 2]
    step = frames[5]["data"]["step"]
    assert step["url"] == "https://example.com/intro"
    assert step["title"].endswith("(Week 1)")
    assert frames[-1]["data"]["status"] == "draft"

    assert driver.calls == []
    assert [w.index for w in store._weeks.values()] == [1, 2]
    assert store._syllabi[STOICISM_ID].status is SyllabusStatus.DRAFT


def test_regeneration_socket_with_provider_driver(client, store, driver):
    driver.script = [finalize_turn(1, title="Marcus in a week")]
    frames, code = _collect(client, f"/ws/regenerate-week/{ONE_WEEK_ID}/1")

    assert code == 1000
    types = [f["type"] for f in frames]
    assert types[0] == "week_started"
    assert types[-2:] == ["week_regeneration_complete", "syllabus_snapshot"]
    assert frames[-2]["data"] == {"syllabusId": ONE_WEEK_ID, "weekIndex": 1}
    assert len(driver.calls) == 1
    weeks = [w for w in store._weeks.values() if w.syllabus_id == ONE_WEEK_ID]
    assert [(w.index, w.title) for w in weeks] == [(1, "Marcus in a week")]


def test_response_carries_request_id(client):
    resp = client.get("/api/health", headers={"X-Request-ID": "req-42"})
    assert resp.headers["x-request-id"] == "req-42"


# ── Client close relay ──────────────────────────────────────


class FakeWebSocket:
    """Minimal socket double: the client closes after the first week completes."""

    def __init__(self, path: str, cookies: dict[str, str], close_after: str = "week_completed"):
        self.url = SimpleNamespace(path=path)
        self.cookies = cookies
        self.query_params: dict[str, str] = {}
        self.frames: list[dict] = []
        self.accepted = False
        self.closed_with: int | None = None
        self._close_after = close_after
        self._client_closed = asyncio.Event()

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        self.frames.append(data)
        if data["type"] == self._close_after:
            self._client_closed.set()
        await asyncio.sleep(0)

    async def receive(self):
        await self._client_closed.wait()
        return {"type": "websocket.disconnect"}

    async def close(self, code: int = 1000, reason: str = ""):
        self.closed_with = code


@pytest.mark.asyncio
async def test_client_close_cancels_session_once(settings, store, session_cookie):
    driver = ScriptedDriver([plan_turn(2), finalize_turn(1), finalize_turn(2)], delay=0.05)
    ws = FakeWebSocket(f"/ws/generate-syllabind/{STOICISM_ID}", {"connect.sid": session_cookie})
    gateway = GenerationGateway(ws, store=store, driver=driver, settings=settings)

    await asyncio.wait_for(gateway.serve(), timeout=5)

    assert ws.accepted
    assert gateway.ctx.state is ConnectionState.CLOSED
    assert gateway.ctx.cancel_relayed
    assert gateway.ctx.client_close_code == 1005
    assert gateway.ctx.session.cancelled
    assert ws.closed_with is None  # client already went away

    types = [f["type"] for f in ws.frames]
    assert "generation_complete" not in types
    assert "generation_error" not in types
    assert [w.index for w in await store.list_weeks(STOICISM_ID)] == [1]
    assert (await store.get_syllabus(STOICISM_ID)).status is SyllabusStatus.DRAFT


@pytest.mark.asyncio
async def test_frames_after_close_are_dropped(settings, store, session_cookie):
    ws = FakeWebSocket(f"/ws/generate-syllabind/{STOICISM_ID}", {"connect.sid": session_cookie})
    gateway = GenerationGateway(ws, store=store, driver=ScriptedDriver(), settings=settings)

    await gateway.close(1000)
    await gateway.send_event(ErrorEvent(message="late"))

    assert ws.frames == []
    assert ws.closed_with == 1000
