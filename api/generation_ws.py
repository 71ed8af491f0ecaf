"""Generation sockets — the Protocol Gateway between a client and one session.

Endpoints:
- ``WS /ws/generate-syllabind/{syllabusId}``              — full generation
- ``WS /ws/regenerate-week/{syllabusId}/{weekIndex}``     — one week

Either may carry ``?mock=true`` to run the fixture driver (no provider calls).

Per-connection state machine (held in :class:`GatewayContext`)::

    UNAUTHENTICATED ─cookie ok─▶ AUTHORIZING ─owner ok─▶ ROUTING ─route ok─▶ ACTIVE ─▶ CLOSED
          │4401                       │4400/4404/4403        │4400

Every rejection sends an ``error`` frame and closes with its code before any
session exists, so a refused connection never touches storage.  While
ACTIVE, session events are forwarded verbatim as ``{type, data}`` frames and
a client close is relayed into the session as exactly one ``cancel()``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from fastapi import APIRouter, Depends, WebSocket
from starlette.websockets import WebSocketDisconnect

from agents.generation_session import GenerationMode, GenerationSession, GenerationTarget
from config.settings import Settings, get_settings
from errors.exceptions import GatewayRejection
from models.syllabind import Syllabus, User
from models.ws_events import CANCELLATION_CLOSE_CODES, CloseCode, ErrorEvent, EventPayload
from services.anthropic_service import ConversationDriver, get_conversation_driver
from services.auth import authenticate_cookies
from services.mock_driver import FixtureConversationDriver
from services.syllabind_store import SyllabindStore, get_syllabind_store
from services.url_validator import get_url_validator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["generation"])

_GENERATE_PATH = re.compile(r"^/ws/generate-syllabind/(?P<syllabus_id>[^/]*)/?$")
_REGENERATE_PATH = re.compile(r"^/ws/regenerate-week/(?P<syllabus_id>[^/]*)/(?P<week_index>[^/]*)/?$")


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZING = "authorizing"
    ROUTING = "routing"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class ParsedRoute:
    syllabus_id: int
    mode: GenerationMode
    week_index: int | None = None
    mock: bool = False

    def target(self) -> GenerationTarget:
        if self.mode is GenerationMode.SINGLE_WEEK_REGENERATION:
            if self.week_index is None:
                raise ValueError("Week regeneration route without a week index")
            return GenerationTarget.regenerate(self.syllabus_id, self.week_index)
        return GenerationTarget.full(self.syllabus_id)


def _positive_int(raw: str | None) -> int | None:
    if raw is None or not raw.isdigit():
        return None
    value = int(raw)
    return value if value > 0 else None


def parse_route(path: str, query: Mapping[str, str]) -> ParsedRoute:
    """Pure route parsing: mode, ids and mock flag.

    Raises:
        GatewayRejection: 4400 for an unknown path, a malformed syllabus id
            or a malformed week index.  Range checks need the syllabus and
            happen in :func:`check_week_in_range`.
    """
    mock = query.get("mock") == "true"

    match = _GENERATE_PATH.match(path)
    if match:
        syllabus_id = _positive_int(match.group("syllabus_id"))
        if syllabus_id is None:
            raise GatewayRejection(CloseCode.INVALID_REQUEST, "Missing syllabus ID in WebSocket URL.")
        return ParsedRoute(syllabus_id, GenerationMode.FULL_GENERATION, mock=mock)

    match = _REGENERATE_PATH.match(path)
    if match:
        syllabus_id = _positive_int(match.group("syllabus_id"))
        if syllabus_id is None:
            raise GatewayRejection(CloseCode.INVALID_REQUEST, "Missing syllabus ID in WebSocket URL.")
        week_index = _positive_int(match.group("week_index"))
        if week_index is None:
            raise GatewayRejection(CloseCode.INVALID_REQUEST, "Invalid week index.")
        return ParsedRoute(
            syllabus_id, GenerationMode.SINGLE_WEEK_REGENERATION, week_index, mock=mock
        )

    raise GatewayRejection(CloseCode.INVALID_REQUEST, "Unknown generation route.")


def check_week_in_range(route: ParsedRoute, syllabus: Syllabus) -> None:
    if route.week_index is not None and route.week_index > syllabus.duration_weeks:
        raise GatewayRejection(
            CloseCode.INVALID_REQUEST,
            f"Week index {route.week_index} is outside 1-{syllabus.duration_weeks}.",
        )


@dataclass
class GatewayContext:
    """Everything one connection knows about itself."""

    state: ConnectionState = ConnectionState.UNAUTHENTICATED
    user: User | None = None
    syllabus: Syllabus | None = None
    route: ParsedRoute | None = None
    session: GenerationSession | None = None
    cancel_relayed: bool = False
    client_close_code: int | None = None

    def advance(self, state: ConnectionState) -> None:
        logger.debug("[Gateway] %s → %s", self.state.value, state.value)
        self.state = state


class GenerationGateway:
    """Serves one generation socket from accept to close."""

    def __init__(
        self,
        websocket: WebSocket,
        *,
        store: SyllabindStore,
        driver: ConversationDriver,
        settings: Settings,
    ) -> None:
        self.websocket = websocket
        self.store = store
        self.driver = driver
        self.settings = settings
        self.ctx = GatewayContext()

    # ── Framing ─────────────────────────────────────────────

    async def send_event(self, payload: EventPayload) -> None:
        """Forward one frame; frames after close are dropped."""
        if self.ctx.state is ConnectionState.CLOSED:
            logger.debug("[Gateway] Dropped %s after close", payload.event.value)
            return
        try:
            await self.websocket.send_json(payload.to_frame())
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.info("[Gateway] Send failed, treating as client close: %s", exc)
            self.ctx.advance(ConnectionState.CLOSED)
            self._relay_cancel()

    async def close(self, code: int, reason: str = "") -> None:
        if self.ctx.state is ConnectionState.CLOSED:
            return
        self.ctx.advance(ConnectionState.CLOSED)
        try:
            await self.websocket.close(code=code, reason=reason)
        except RuntimeError:
            logger.debug("[Gateway] Socket already closed")

    def _relay_cancel(self) -> None:
        if self.ctx.cancel_relayed or self.ctx.session is None:
            return
        self.ctx.cancel_relayed = True
        self.ctx.session.cancel()

    # ── Admission ───────────────────────────────────────────

    async def admit(self) -> tuple[ParsedRoute, Syllabus]:
        """Run the UNAUTHENTICATED → ACTIVE checks.  Raises GatewayRejection."""
        user = await authenticate_cookies(self.websocket.cookies, self.store)
        if user is None:
            raise GatewayRejection(CloseCode.UNAUTHORIZED, "Authentication failed. Please log in again.")
        self.ctx.user = user
        self.ctx.advance(ConnectionState.AUTHORIZING)

        route = parse_route(self.websocket.url.path, self.websocket.query_params)
        syllabus = await self.store.get_syllabus(route.syllabus_id)
        if syllabus is None:
            raise GatewayRejection(CloseCode.NOT_FOUND, "Syllabus not found.")
        if syllabus.creator_id != user.username:
            raise GatewayRejection(CloseCode.FORBIDDEN, "Not authorized to modify this syllabus.")
        self.ctx.syllabus = syllabus
        self.ctx.advance(ConnectionState.ROUTING)

        check_week_in_range(route, syllabus)
        if route.mock and not self.settings.allow_mock_generation:
            raise GatewayRejection(CloseCode.INVALID_REQUEST, "Mock generation is disabled.")
        self.ctx.route = route
        return route, syllabus

    async def reject(self, rejection: GatewayRejection) -> None:
        logger.info(
            "[Gateway] Rejected %s with %d: %s",
            self.websocket.url.path, rejection.close_code, rejection,
        )
        await self.send_event(ErrorEvent(message=str(rejection)))
        await self.close(int(rejection.close_code), str(rejection))

    # ── Active phase ────────────────────────────────────────

    def _build_session(self, route: ParsedRoute, syllabus: Syllabus) -> GenerationSession:
        if route.mock:
            driver: ConversationDriver = FixtureConversationDriver(syllabus.duration_weeks)
            validator = None
        else:
            driver = self.driver
            validator = get_url_validator()
        return GenerationSession(
            route.target(),
            syllabus,
            driver=driver,
            store=self.store,
            emit=self.send_event,
            url_validator=validator,
            settings=self.settings,
        )

    async def _watch_client(self) -> None:
        """Return when the client closes; the client sends nothing else we act on."""
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                self.ctx.client_close_code = message.get("code", CloseCode.NO_STATUS)
                return
            logger.debug("[Gateway] Ignoring client frame")

    async def run_session(self, route: ParsedRoute, syllabus: Syllabus) -> None:
        session = self._build_session(route, syllabus)
        self.ctx.session = session
        self.ctx.advance(ConnectionState.ACTIVE)

        run_task = asyncio.create_task(session.run())
        watch_task = asyncio.create_task(self._watch_client())
        await asyncio.wait({run_task, watch_task}, return_when=asyncio.FIRST_COMPLETED)

        if run_task.done():
            watch_task.cancel()
            outcome = run_task.result()
            logger.info("[Gateway] Session for syllabind %d ended: %s", route.syllabus_id, outcome.value)
            await self.close(CloseCode.NORMAL)
            return

        code = self.ctx.client_close_code
        if code in CANCELLATION_CLOSE_CODES:
            logger.info("[Gateway] Client closed (%s), cancelling syllabind %d", code, route.syllabus_id)
        else:
            logger.warning("[Gateway] Client dropped with code %s, cancelling", code)
        self.ctx.advance(ConnectionState.CLOSED)
        self._relay_cancel()
        outcome = await run_task
        logger.info("[Gateway] Session for syllabind %d ended: %s", route.syllabus_id, outcome.value)

    async def serve(self) -> None:
        await self.websocket.accept()
        try:
            route, syllabus = await self.admit()
        except GatewayRejection as rejection:
            await self.reject(rejection)
            return

        try:
            await self.run_session(route, syllabus)
        except Exception:
            logger.exception("[Gateway] Unexpected failure on %s", self.websocket.url.path)
            if self.ctx.session is not None:
                self._relay_cancel()
            await self.send_event(ErrorEvent(message="Internal server error"))
            await self.close(CloseCode.INTERNAL_ERROR)


# ── Routes ──────────────────────────────────────────────────


@router.websocket("/ws/generate-syllabind/{syllabus_id}")
async def generate_syllabind_ws(
    websocket: WebSocket,
    syllabus_id: str,
    store: SyllabindStore = Depends(get_syllabind_store),
    driver: ConversationDriver = Depends(get_conversation_driver),
    settings: Settings = Depends(get_settings),
):
    await GenerationGateway(websocket, store=store, driver=driver, settings=settings).serve()


@router.websocket("/ws/regenerate-week/{syllabus_id}/{week_index}")
async def regenerate_week_ws(
    websocket: WebSocket,
    syllabus_id: str,
    week_index: str,
    store: SyllabindStore = Depends(get_syllabind_store),
    driver: ConversationDriver = Depends(get_conversation_driver),
    settings: Settings = Depends(get_settings),
):
    await GenerationGateway(websocket, store=store, driver=driver, settings=settings).serve()
