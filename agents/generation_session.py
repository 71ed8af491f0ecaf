"""Generation Session — stateful orchestrator for one syllabind socket.

Bound to one :class:`GenerationTarget` (full generation, or regeneration of
a single week) and runs, in order:

1. **Planning** (full generation only): one forced ``plan_curriculum`` turn,
   normalised to exactly ``1..durationWeeks``.
2. **Week fill**: per week, a fresh bounded agentic loop with
   ``web_search`` + ``finalize_week``.  Each finalized week is persisted
   immediately, step by step.
3. **URL repair** (full generation only): one bounded loop with
   ``web_search`` + ``provide_urls`` for readings saved without a URL.

Every progress step is pushed through the ``emit`` callback as a typed
frame payload.  Provider throttling is absorbed by the
:class:`RateLimitController` (countdown, then the *same* turn is retried).
Cancellation is cooperative: ``cancel()`` sets a flag checked at each loop
iteration, after each turn and at phase boundaries.

The session never trusts its own view of what was saved: when it ends it
re-reads storage and emits a ``syllabus_snapshot`` so the client can
reconcile.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from config.prompts.generation import (
    REPAIR_NUDGE,
    CourseBasics,
    MissingUrlStep,
    build_finalize_nudge,
    build_outline,
    build_planning_prompt,
    build_planning_request,
    build_regeneration_prompt,
    build_repair_prompt,
    build_repair_request,
    build_week_prompt,
    build_week_request,
)
from config.settings import Settings, get_settings
from errors.exceptions import (
    GenerationCancelled,
    PlanningError,
    ProviderRateLimitError,
    StepValidationError,
    ToolPayloadError,
    WeekStalledError,
)
from models.errors import describe_error
from models.syllabind import Step, StepDraft, StepType, Syllabus, SyllabusStatus, Week, WeekPlan
from models.tool_payloads import (
    FINALIZE_WEEK,
    PLAN_CURRICULUM,
    PROVIDE_URLS,
    WEB_SEARCH,
    FinalizeWeekCall,
    FinalizeWeekInput,
    WebSearchCall,
    parse_tool_call,
    validate_week_steps,
)
from models.ws_events import (
    CompletedWeek,
    CurriculumPlanned,
    EventPayload,
    GenerationComplete,
    GenerationErrorEvent,
    PlanningStarted,
    Searching,
    StepCompleted,
    StepUrlRepaired,
    SyllabusSnapshot,
    UrlRepairComplete,
    UrlRepairStarted,
    WeekCompleted,
    WeekInfo,
    WeekRegenerationComplete,
    WeekStarted,
)
from services.anthropic_service import (
    ConversationDriver,
    ToolCallComplete,
    TurnComplete,
    is_rate_limit_sufficient,
)
from services.rate_limit import RateLimitController, compute_backoff
from services.syllabind_store import SyllabindStore
from services.url_validator import UrlValidator
from tools.registry import TOOLSET_GENERATION, TOOLSET_PLANNING, TOOLSET_REPAIR, get_tools

logger = logging.getLogger(__name__)

Emit = Callable[[EventPayload], Awaitable[None]]


class GenerationMode(str, Enum):
    FULL_GENERATION = "full_generation"
    SINGLE_WEEK_REGENERATION = "single_week_regeneration"


@dataclass(frozen=True)
class GenerationTarget:
    syllabus_id: int
    mode: GenerationMode = GenerationMode.FULL_GENERATION
    week_index: int | None = None

    @classmethod
    def full(cls, syllabus_id: int) -> GenerationTarget:
        return cls(syllabus_id)

    @classmethod
    def regenerate(cls, syllabus_id: int, week_index: int) -> GenerationTarget:
        return cls(syllabus_id, GenerationMode.SINGLE_WEEK_REGENERATION, week_index)


class SessionOutcome(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"  # Finished, but at least one week failed
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TurnResult:
    stop_reason: str | None
    content: list[dict[str, Any]]
    tool_calls: list[ToolCallComplete] = field(default_factory=list)

    @property
    def client_calls(self) -> list[ToolCallComplete]:
        return [c for c in self.tool_calls if not c.server_side]


def _tool_result(call_id: str, content: Any, *, is_error: bool = False) -> dict[str, Any]:
    block: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": call_id,
        "content": content if isinstance(content, str) else json.dumps(content),
    }
    if is_error:
        block["is_error"] = True
    return block


class GenerationSession:
    """One generation run.  Not reusable: create a new session per socket."""

    def __init__(
        self,
        target: GenerationTarget,
        syllabus: Syllabus,
        *,
        driver: ConversationDriver,
        store: SyllabindStore,
        emit: Emit,
        url_validator: UrlValidator | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.target = target
        self.syllabus = syllabus
        self.duration_weeks = syllabus.duration_weeks
        self.driver = driver
        self.store = store
        self.settings = settings or get_settings()
        self.url_validator = url_validator if self.settings.validate_urls else None
        self._emit_fn = emit

        # Conversation of the phase currently running; append-only within a phase.
        self.history: list[dict[str, Any]] = []
        self.cancelled = False
        self.failed_weeks: list[int] = []

        self._rate_limit = RateLimitController(
            self._emit, tick_seconds=self.settings.rate_limit_tick_seconds
        )
        self._emitted_step_ids: set[int] = set()
        self._current_week: int | None = None
        self._api_calls = 0
        self._started_at = time.monotonic()

    @property
    def basics(self) -> CourseBasics:
        return CourseBasics(
            title=self.syllabus.title,
            description=self.syllabus.description,
            audience_level=self.syllabus.audience_level,
            duration_weeks=self.duration_weeks,
        )

    @property
    def rate_limit(self) -> RateLimitController:
        return self._rate_limit

    # ── Control ─────────────────────────────────────────────

    def cancel(self) -> None:
        """Request cooperative cancellation.  Idempotent."""
        if self.cancelled:
            return
        self.cancelled = True
        self._rate_limit.cancel()
        logger.info(
            "[Generate] Cancellation requested for syllabind %d (%d API calls made)",
            self.target.syllabus_id, self._api_calls,
        )

    def _check_cancelled(self, where: str) -> None:
        if self.cancelled:
            raise GenerationCancelled(where)

    async def _emit(self, payload: EventPayload) -> None:
        await self._emit_fn(payload)

    async def _emit_generation_error(self, exc: BaseException, week_index: int | None) -> None:
        desc = describe_error(exc)
        await self._emit(GenerationErrorEvent(
            message=desc.message,
            week_index=week_index,
            is_rate_limit=desc.is_rate_limit or None,
            reset_in=desc.reset_in,
            details=desc.details,
        ))

    # ── Entry point ─────────────────────────────────────────

    async def run(self) -> SessionOutcome:
        sid = self.target.syllabus_id
        logger.info(
            "[Generate] Starting %s for syllabind %d (%d weeks, %s)",
            self.target.mode.value, sid, self.duration_weeks, self.syllabus.audience_level,
        )
        outcome = SessionOutcome.FAILED
        try:
            if await self._preflight():
                if self.target.mode is GenerationMode.FULL_GENERATION:
                    outcome = await self._run_full()
                else:
                    outcome = await self._run_regeneration()
        except GenerationCancelled as exc:
            logger.info("[Generate] Cancelled (%s)", exc)
            outcome = SessionOutcome.CANCELLED
        except Exception as exc:
            logger.exception("[Generate] Syllabind %d generation failed", sid)
            await self._emit_generation_error(exc, self._current_week)
            outcome = SessionOutcome.FAILED
        finally:
            self._rate_limit.cancel()
            await self._reconcile(outcome)
        return outcome

    async def _preflight(self) -> bool:
        if not self.settings.preflight_rate_limit_check:
            return True
        logger.info("[Generate] Checking rate limit status...")
        status = await self.driver.probe_rate_limit()
        await self._emit(status)
        if is_rate_limit_sufficient(status, self.settings.min_remaining_requests):
            return True
        logger.warning("[Generate] Not starting: %s", status.message)
        await self._emit(GenerationErrorEvent(
            message=status.message,
            is_rate_limit=True,
            reset_in=status.reset_in,
        ))
        return False

    async def _reconcile(self, outcome: SessionOutcome) -> None:
        """Return the syllabus to draft and push the authoritative state."""
        sid = self.target.syllabus_id
        try:
            current = await self.store.get_syllabus(sid)
            if current is not None and current.status is SyllabusStatus.GENERATING:
                current = await self.store.update_syllabus_status(sid, SyllabusStatus.DRAFT)
            if current is not None and outcome is not SessionOutcome.CANCELLED:
                weeks = await self.store.get_snapshot(sid)
                await self._emit(SyllabusSnapshot(
                    syllabus_id=sid, status=current.status.value, weeks=weeks
                ))
        except Exception:
            logger.exception("[Generate] Failed to reconcile syllabind %d", sid)
        logger.info(
            "[Generate] Session %s: %d API calls in %.1fs",
            outcome.value, self._api_calls, time.monotonic() - self._started_at,
        )

    # ── Modes ───────────────────────────────────────────────

    async def _run_full(self) -> SessionOutcome:
        sid = self.target.syllabus_id
        removed = await self.store.delete_weeks(sid)
        if removed:
            logger.info("[Generate] Cleared %d existing weeks", removed)

        plans = await self._plan()
        outline = build_outline(plans)
        logger.info("[Generate] Curriculum planned:\n%s", outline)

        for plan in plans:
            self._check_cancelled(f"before week {plan.week_index}")
            system = build_week_prompt(self.basics, plan, outline)
            await self._fill_week_isolated(plan, system)

        self._check_cancelled("before URL repair")
        await self._repair_urls()

        self._check_cancelled("before completion")
        self._current_week = None
        await self._emit(GenerationComplete(
            syllabus_id=sid,
            failed_weeks=self.failed_weeks or None,
        ))
        return SessionOutcome.PARTIAL if self.failed_weeks else SessionOutcome.COMPLETED

    async def _run_regeneration(self) -> SessionOutcome:
        sid = self.target.syllabus_id
        index = self.target.week_index
        if index is None:
            raise ValueError("Week regeneration requires a week index")

        existing = await self.store.get_week_by_index(sid, index)
        if existing is not None:
            deleted = await self.store.delete_steps(existing.id)
            logger.info("[RegenerateWeek] Deleted %d steps for week %d", deleted, index)

        others = [
            WeekPlan(week_index=w.index, title=w.title, description=w.description)
            for w in await self.store.list_weeks(sid)
            if w.index != index
        ]
        plan = WeekPlan(
            week_index=index,
            title=existing.title if existing else "",
            description=existing.description if existing else "",
        )
        system = build_regeneration_prompt(
            self.basics, index, build_outline(others), plan.title, plan.description
        )

        if not await self._fill_week_isolated(plan, system, existing):
            return SessionOutcome.FAILED

        self._check_cancelled("before completion")
        await self._emit(WeekRegenerationComplete(syllabus_id=sid, week_index=index))
        return SessionOutcome.COMPLETED

    # ── Turn execution ──────────────────────────────────────

    def _log_api_call(self, label: str) -> None:
        self._api_calls += 1
        elapsed = time.monotonic() - self._started_at
        logger.info("[API Call #%d] %s (%.1fs elapsed)", self._api_calls, label, elapsed)

    async def _run_turn(
        self,
        *,
        system: str,
        tools: list[dict[str, Any]],
        model: str,
        max_tokens: int,
        label: str,
        tool_choice: dict[str, Any] | None = None,
    ) -> TurnResult:
        """One driver turn with throttling absorbed; appends the assistant message.

        A throttled turn is retried from the same history after a countdown,
        up to ``rate_limit_max_retries`` times; then the error propagates.
        """
        attempt = 0
        while True:
            self._check_cancelled(label)
            self._log_api_call(label)
            try:
                result = await self._consume_turn(
                    system=system, tools=tools, model=model,
                    max_tokens=max_tokens, tool_choice=tool_choice,
                )
            except ProviderRateLimitError as exc:
                if attempt >= self.settings.rate_limit_max_retries:
                    logger.error("[RateLimit] %s: giving up after %d retries", label, attempt)
                    raise
                wait = compute_backoff(exc, attempt, max_wait=self.settings.rate_limit_max_wait)
                attempt += 1
                logger.warning(
                    "[RateLimit] %d received on %s, waiting %ds (attempt %d/%d)",
                    exc.status_code, label, wait, attempt, self.settings.rate_limit_max_retries,
                )
                self._check_cancelled(label)
                await self._rate_limit.wait(wait)
                continue

            self.history.append({
                "role": "assistant",
                "content": result.content or [{"type": "text", "text": "(continuing)"}],
            })
            return result

    async def _consume_turn(
        self,
        *,
        system: str,
        tools: list[dict[str, Any]],
        model: str,
        max_tokens: int,
        tool_choice: dict[str, Any] | None,
    ) -> TurnResult:
        calls: list[ToolCallComplete] = []
        complete: TurnComplete | None = None
        stream = self.driver.run_turn(
            self.history, tools, system,
            model=model, max_tokens=max_tokens, tool_choice=tool_choice,
        )
        async with aclosing(stream):
            async for event in stream:
                if self.cancelled:
                    break
                if isinstance(event, ToolCallComplete):
                    calls.append(event)
                    if event.server_side and event.name == WEB_SEARCH:
                        await self._emit(Searching(
                            query=str(event.arguments.get("query", "")),
                            week_index=self._current_week,
                        ))
                elif isinstance(event, TurnComplete):
                    complete = event

        # In-flight results are discarded once cancellation is observed.
        self._check_cancelled("after turn")
        if complete is None:
            raise RuntimeError("Model stream ended before the turn completed")
        return TurnResult(complete.stop_reason, list(complete.content), calls)

    # ── Planning phase ──────────────────────────────────────

    async def _plan(self) -> list[WeekPlan]:
        await self._emit(PlanningStarted(duration_weeks=self.duration_weeks))
        self.history = [{"role": "user", "content": build_planning_request(self.basics)}]

        turn = await self._run_turn(
            system=build_planning_prompt(self.basics),
            tools=get_tools(TOOLSET_PLANNING),
            model=self.settings.planning_model,
            max_tokens=self.settings.planning_max_tokens,
            tool_choice={"type": "tool", "name": PLAN_CURRICULUM},
            label="plan curriculum",
        )
        call = next((c for c in turn.tool_calls if c.name == PLAN_CURRICULUM), None)
        if call is None:
            raise PlanningError(
                f"The model did not call {PLAN_CURRICULUM} (stop_reason={turn.stop_reason})"
            )
        try:
            parsed = parse_tool_call(call.name, call.call_id, call.arguments)
        except ToolPayloadError as exc:
            raise PlanningError(f"Invalid curriculum plan: {exc.detail}") from exc

        plans = parsed.input.normalized(self.duration_weeks)
        logger.info("[PlanCurriculum] Got %d week outlines", len(parsed.input.weeks))
        self._check_cancelled("after planning")
        await self._emit(CurriculumPlanned(weeks=plans))
        return plans

    # ── Week-fill phase ─────────────────────────────────────

    async def _fill_week_isolated(
        self, plan: WeekPlan, system: str, existing: Week | None = None
    ) -> bool:
        """Fill one week; a stalled or invalid week is reported, not fatal."""
        try:
            await self._fill_week(plan, system, existing)
        except (WeekStalledError, ToolPayloadError) as exc:
            logger.warning("[Week %d] %s", plan.week_index, exc)
            self.failed_weeks.append(plan.week_index)
            await self._emit_generation_error(exc, plan.week_index)
            return False
        return True

    async def _fill_week(self, plan: WeekPlan, system: str, existing: Week | None = None) -> Week:
        index = plan.week_index
        self._current_week = index
        await self._emit(WeekStarted(week_index=index))

        self.history = [{"role": "user", "content": build_week_request(index)}]
        tools = get_tools(TOOLSET_GENERATION, search_budget=self.settings.web_search_max_uses)
        max_iterations = self.settings.week_fill_max_iterations
        last_problem: str | None = None

        for iteration in range(1, max_iterations + 1):
            self._check_cancelled(f"week {index} turn {iteration}")
            turn = await self._run_turn(
                system=system,
                tools=tools,
                model=self.settings.generation_model,
                max_tokens=self.settings.generation_max_tokens,
                label=f"generate week {index} (turn {iteration})",
            )
            if not turn.tool_calls:
                raise WeekStalledError(
                    index,
                    f"Week {index} stalled: the model replied without calling a tool "
                    f"(stop_reason={turn.stop_reason})",
                )

            results: list[dict[str, Any]] = []
            attempted_finalize = False
            for call in turn.client_calls:
                try:
                    parsed = parse_tool_call(call.name, call.call_id, call.arguments)
                except ToolPayloadError as exc:
                    logger.warning("[Week %d] %s", index, exc)
                    attempted_finalize = attempted_finalize or call.name == FINALIZE_WEEK
                    last_problem = exc.detail
                    results.append(_tool_result(call.call_id, str(exc), is_error=True))
                    continue

                if isinstance(parsed, WebSearchCall):
                    await self._emit(Searching(query=parsed.input.query, week_index=index))
                    results.append(_tool_result(
                        call.call_id, "Search acknowledged; results arrive from the search service."
                    ))
                elif isinstance(parsed, FinalizeWeekCall):
                    attempted_finalize = True
                    try:
                        validate_week_steps(parsed.input.steps)
                    except StepValidationError as exc:
                        logger.warning("[Week %d] %s", index, exc)
                        last_problem = exc.detail
                        results.append(_tool_result(call.call_id, str(exc), is_error=True))
                        continue
                    # Remaining calls in this turn are moot once the week is saved.
                    return await self._persist_week(plan, parsed.input, existing)
                else:
                    results.append(_tool_result(
                        call.call_id, f"Tool '{call.name}' is not available here.", is_error=True
                    ))

            content: list[dict[str, Any]] = list(results)
            if not attempted_finalize:
                content.append({
                    "type": "text",
                    "text": build_finalize_nudge(index, title_preset=bool(plan.title)),
                })
            self.history.append({"role": "user", "content": content})
            logger.info("[Week %d] Turn %d ended without a saved week, continuing", index, iteration)

        message = f"Failed to generate Week {index} after {max_iterations} attempts. Try again."
        if last_problem:
            message += f" Last problem: {last_problem}"
        raise WeekStalledError(index, message)

    async def _persist_week(
        self, plan: WeekPlan, data: FinalizeWeekInput, existing: Week | None
    ) -> Week:
        self._check_cancelled(f"before saving week {plan.week_index}")
        index = plan.week_index
        if data.week_index is not None and data.week_index != index:
            logger.warning("[Week %d] finalize_week reported weekIndex=%d, ignored", index, data.week_index)

        # Pre-set title/description win; the model's are a fallback.
        title = plan.title or data.title or ""
        description = plan.description or data.description or ""

        sid = self.target.syllabus_id
        if existing is None:
            week = await self.store.create_week(sid, index, title, description)
        elif (existing.title, existing.description) != (title, description):
            week = await self.store.update_week(existing.id, title=title, description=description)
        else:
            week = existing

        steps: list[Step] = []
        try:
            await self._emit(WeekInfo(week_index=index, title=title, description=description))
            for position, draft in enumerate(data.steps, start=1):
                if position > 1 and self.settings.step_stream_delay > 0:
                    await asyncio.sleep(self.settings.step_stream_delay)
                prepared = await self._prepare_step(index, position, draft)
                self._check_cancelled(f"before saving week {index} step {position}")
                step = await self.store.create_step(week.id, position, prepared)
                logger.info("[Week %d] Saved step %d: %s - %s", index, position, step.type.value, step.title)
                steps.append(step)
                await self._emit_step(index, position, step)
            self._check_cancelled(f"before completing week {index}")
        except GenerationCancelled:
            await self._discard_partial_week(week, created=existing is None)
            raise

        await self._emit(WeekCompleted(
            week_index=index,
            week=CompletedWeek(week_index=index, title=title, description=description, steps=steps),
        ))
        logger.info("[Week %d] Week saved with %d steps", index, len(steps))
        return week

    async def _discard_partial_week(self, week: Week, *, created: bool) -> None:
        """Roll back a week interrupted by cancellation mid-save."""
        if created:
            await self.store.delete_week(week.id)
        else:
            await self.store.delete_steps(week.id)
        logger.info("[Week %d] Cancelled mid-save, partial week discarded", week.index)

    async def _prepare_step(self, week_index: int, position: int, draft: StepDraft) -> StepDraft:
        url = draft.url or None
        if url and draft.type is StepType.READING and not await self._url_ok(url):
            logger.warning("[Week %d] Step %d URL failed validation: %s", week_index, position, url)
            url = None
        return draft.model_copy(update={
            "url": url,
            "estimated_minutes": draft.minutes_or(self.settings.default_estimated_minutes),
        })

    async def _emit_step(self, week_index: int, position: int, step: Step) -> None:
        if step.id in self._emitted_step_ids:
            return
        self._emitted_step_ids.add(step.id)
        await self._emit(StepCompleted(week_index=week_index, step_index=position, step=step))

    async def _url_ok(self, url: str) -> bool:
        if self.url_validator is None:
            return True
        return await self.url_validator.validate(url)

    # ── URL-repair phase ────────────────────────────────────

    async def _find_missing_urls(self) -> list[MissingUrlStep]:
        missing = []
        for week in await self.store.list_weeks(self.target.syllabus_id):
            for step in await self.store.list_steps(week.id):
                if step.type is StepType.READING and not step.url:
                    missing.append(MissingUrlStep(
                        step_id=step.id,
                        week_index=week.index,
                        title=step.title,
                        author=step.author,
                        media_type=step.media_type,
                    ))
        return missing

    async def _repair_urls(self) -> None:
        missing = await self._find_missing_urls()
        if not missing:
            return

        self._current_week = None
        total = len(missing)
        logger.info("[URLRepair] %d readings missing URLs, starting repair pass", total)
        await self._emit(UrlRepairStarted(count=total))

        repaired: list[int] = []
        try:
            await self._run_repair(missing, repaired)
        except GenerationCancelled:
            raise
        except Exception as exc:
            logger.error("[URLRepair] Repair pass failed (non-fatal): %s", exc)
            await self._emit(UrlRepairComplete(repaired=len(repaired), total=total, error=True))
            return

        logger.info("[URLRepair] Complete: %d/%d URLs repaired", len(repaired), total)
        await self._emit(UrlRepairComplete(repaired=len(repaired), total=total))

    async def _run_repair(self, missing: list[MissingUrlStep], repaired: list[int]) -> None:
        wanted = {s.step_id for s in missing}
        budget = min(len(missing) * 3, self.settings.repair_search_budget_cap)
        tools = get_tools(TOOLSET_REPAIR, search_budget=budget)
        system = build_repair_prompt(missing)
        self.history = [{"role": "user", "content": build_repair_request(len(missing))}]

        for turn_no in range(1, self.settings.repair_max_turns + 1):
            turn = await self._run_turn(
                system=system,
                tools=tools,
                model=self.settings.generation_model,
                max_tokens=self.settings.repair_max_tokens,
                label=f"url repair pass (turn {turn_no})",
            )
            provide = [c for c in turn.client_calls if c.name == PROVIDE_URLS]
            if provide:
                for call in provide:
                    await self._apply_url_fixes(call, wanted, repaired)
                return

            logger.info(
                "[URLRepair] Turn %d: no provide_urls call (stop_reason=%s), retrying",
                turn_no, turn.stop_reason,
            )
            content: list[dict[str, Any]] = [
                _tool_result(c.call_id, f"Tool '{c.name}' is not available here.", is_error=True)
                for c in turn.client_calls
            ]
            content.append({"type": "text", "text": REPAIR_NUDGE})
            self.history.append({"role": "user", "content": content})

    async def _apply_url_fixes(
        self, call: ToolCallComplete, wanted: set[int], repaired: list[int]
    ) -> None:
        try:
            parsed = parse_tool_call(call.name, call.call_id, call.arguments)
        except ToolPayloadError as exc:
            logger.warning("[URLRepair] %s", exc)
            return

        for fix in parsed.input.urls:
            self._check_cancelled("during URL repair")
            if fix.step_id not in wanted or fix.step_id in repaired:
                logger.warning("[URLRepair] Ignoring URL for unexpected step %d", fix.step_id)
                continue
            if not await self._url_ok(fix.url):
                logger.warning("[URLRepair] URL failed validation for step %d: %s", fix.step_id, fix.url)
                continue
            step = await self.store.update_step_url(fix.step_id, fix.url)
            if step is None:
                logger.warning("[URLRepair] Step %d no longer exists", fix.step_id)
                continue
            repaired.append(fix.step_id)
            logger.info("[URLRepair] Repaired step %d with URL: %s", fix.step_id, fix.url)
            await self._emit(StepUrlRepaired(step_id=fix.step_id, url=fix.url))
