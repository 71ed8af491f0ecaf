"""Structured error codes and client-facing error descriptions.

Every failure that reaches the socket is turned into a
:class:`ErrorDescription` by :func:`describe_error`, which feeds the
``generation_error`` frame::

    {"message": ..., "details": ..., "isRateLimit": ..., "resetIn": ...}
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

import anthropic
import httpx

from errors.exceptions import (
    GenerationCancelled,
    PlanningError,
    ProviderRateLimitError,
    ToolPayloadError,
    WeekStalledError,
)


class ErrorCode(str, Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    RATE_LIMITED = "RATE_LIMITED"
    PROVIDER_OVERLOADED = "PROVIDER_OVERLOADED"
    PROVIDER_AUTH = "PROVIDER_AUTH"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_CONNECTION = "PROVIDER_CONNECTION"
    LLM_PROVIDER_ERROR = "LLM_PROVIDER_ERROR"
    TOOL_VALIDATION_FAILED = "TOOL_VALIDATION_FAILED"
    WEEK_STALLED = "WEEK_STALLED"
    PLANNING_FAILED = "PLANNING_FAILED"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class ErrorDescription:
    code: ErrorCode
    message: str
    details: str | None = None
    is_rate_limit: bool = False
    reset_in: int | None = None


_WEB_SEARCH_HINT = "Web search may not be enabled in your organization. Check Console settings."


def describe_error(exc: BaseException) -> ErrorDescription:
    """Map an exception onto a code plus a human-readable message.

    Classification order (first match wins):
        1. Our own domain errors.
        2. Anthropic SDK status / transport errors.
        3. Fallback ``INTERNAL_ERROR`` with the exception text.
    """
    if isinstance(exc, ProviderRateLimitError):
        reset_in = math.ceil(exc.retry_after) if exc.retry_after is not None else None
        if exc.status_code == 529:
            return ErrorDescription(
                ErrorCode.PROVIDER_OVERLOADED,
                "API is currently overloaded. Please try again in a few minutes.",
                is_rate_limit=True,
                reset_in=reset_in,
            )
        details = f"Please wait {reset_in} seconds before trying again." if reset_in else None
        return ErrorDescription(
            ErrorCode.RATE_LIMITED,
            "Rate limit exceeded during generation",
            details=details,
            is_rate_limit=True,
            reset_in=reset_in,
        )
    if isinstance(exc, WeekStalledError):
        return ErrorDescription(ErrorCode.WEEK_STALLED, str(exc))
    if isinstance(exc, ToolPayloadError):
        return ErrorDescription(ErrorCode.TOOL_VALIDATION_FAILED, str(exc), details=exc.detail)
    if isinstance(exc, PlanningError):
        return ErrorDescription(ErrorCode.PLANNING_FAILED, str(exc))
    if isinstance(exc, GenerationCancelled):
        return ErrorDescription(ErrorCode.CANCELLED, "Generation cancelled")

    if isinstance(exc, anthropic.APITimeoutError):
        return ErrorDescription(ErrorCode.PROVIDER_TIMEOUT, "The model provider timed out. Try again.")
    if isinstance(exc, anthropic.APIConnectionError):
        return ErrorDescription(
            ErrorCode.PROVIDER_CONNECTION, "Could not reach the model provider. Try again."
        )
    if isinstance(exc, anthropic.APIStatusError):
        message = getattr(exc, "message", None) or str(exc)
        if exc.status_code == 400:
            return ErrorDescription(ErrorCode.INVALID_REQUEST, message, details=_WEB_SEARCH_HINT)
        if exc.status_code in (401, 403):
            return ErrorDescription(
                ErrorCode.PROVIDER_AUTH,
                "The model provider rejected the API credential.",
                details=message,
            )
        if exc.status_code == 529:
            return ErrorDescription(
                ErrorCode.PROVIDER_OVERLOADED,
                "API is currently overloaded. Please try again in a few minutes.",
            )
        return ErrorDescription(ErrorCode.LLM_PROVIDER_ERROR, message)
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ErrorDescription(ErrorCode.PROVIDER_TIMEOUT, "A request timed out. Try again.")

    return ErrorDescription(ErrorCode.INTERNAL_ERROR, str(exc) or "Unknown error")
