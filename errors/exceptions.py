"""Domain-specific exceptions for the Syllabind generation service.

These exceptions let the Generation Session and the socket gateway tell
apart the failure modes that need different wire events: provider
throttling (countdown + resume), tool/validation problems (per-week
``generation_error``), cancellation (silent) and gateway rejections
(close code, no session).
"""

from __future__ import annotations


class GenerationError(Exception):
    """Base class for generation failures."""


class ProviderRateLimitError(GenerationError):
    """The model provider throttled the request (HTTP 429 / 529).

    Raised by the Conversation Driver instead of the SDK error so the
    Rate-Limit Controller can intercept it before generic error handling.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        remaining: int | None = None,
        limit: int | None = None,
        status_code: int = 429,
    ) -> None:
        self.retry_after = retry_after
        self.remaining = remaining
        self.limit = limit
        self.status_code = status_code
        super().__init__(message)


class ToolPayloadError(GenerationError):
    """A tool call carried arguments that do not match its contract."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        self.detail = message
        super().__init__(f"Tool '{tool_name}' rejected: {message}")


class StepValidationError(ToolPayloadError):
    """``finalize_week`` steps violate the 3 readings + 1 exercise rule."""

    def __init__(self, message: str, step_types: list[str] | None = None) -> None:
        self.step_types = step_types or []
        super().__init__("finalize_week", message)


class PlanningError(GenerationError):
    """The planning turn ended without a usable ``plan_curriculum`` call."""


class WeekStalledError(GenerationError):
    """A week's agentic loop ended without a valid ``finalize_week``."""

    def __init__(self, week_index: int, message: str) -> None:
        self.week_index = week_index
        super().__init__(message)


class GenerationCancelled(GenerationError):
    """The client closed the socket; stop at the next checkpoint."""


class GatewayRejection(GenerationError):
    """The socket gateway refused a connection before creating a session."""

    def __init__(self, close_code: int, message: str) -> None:
        self.close_code = close_code
        super().__init__(message)
