"""Tests for exception → client message mapping."""

import anthropic
import httpx

from errors.exceptions import (
    GenerationCancelled,
    PlanningError,
    ProviderRateLimitError,
    StepValidationError,
    WeekStalledError,
)
from models.errors import ErrorCode, describe_error

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _status_error(cls, status):
    return cls(message=f"status {status}", response=httpx.Response(status, request=_REQUEST), body=None)


def test_rate_limit_rounds_reset_up():
    desc = describe_error(ProviderRateLimitError(retry_after=4.2))
    assert desc.code is ErrorCode.RATE_LIMITED
    assert desc.is_rate_limit
    assert desc.reset_in == 5
    assert desc.message == "Rate limit exceeded during generation"
    assert desc.details == "Please wait 5 seconds before trying again."


def test_rate_limit_without_hint():
    desc = describe_error(ProviderRateLimitError())
    assert desc.reset_in is None
    assert desc.details is None


def test_overloaded_rate_limit():
    desc = describe_error(ProviderRateLimitError(status_code=529))
    assert desc.code is ErrorCode.PROVIDER_OVERLOADED
    assert desc.is_rate_limit


def test_domain_errors():
    assert describe_error(WeekStalledError(2, "stalled")).code is ErrorCode.WEEK_STALLED
    assert describe_error(PlanningError("no plan")).code is ErrorCode.PLANNING_FAILED
    assert describe_error(GenerationCancelled("x")).code is ErrorCode.CANCELLED

    desc = describe_error(StepValidationError("expected exactly 4 steps, got 3"))
    assert desc.code is ErrorCode.TOOL_VALIDATION_FAILED
    assert desc.details == "expected exactly 4 steps, got 3"


def test_bad_request_hints_at_web_search():
    desc = describe_error(_status_error(anthropic.BadRequestError, 400))
    assert desc.code is ErrorCode.INVALID_REQUEST
    assert "Web search" in desc.details


def test_credential_rejected():
    desc = describe_error(_status_error(anthropic.AuthenticationError, 401))
    assert desc.code is ErrorCode.PROVIDER_AUTH


def test_overloaded_status():
    desc = describe_error(_status_error(anthropic.APIStatusError, 529))
    assert desc.code is ErrorCode.PROVIDER_OVERLOADED


def test_other_status():
    desc = describe_error(_status_error(anthropic.InternalServerError, 500))
    assert desc.code is ErrorCode.LLM_PROVIDER_ERROR


def test_transport_errors():
    assert describe_error(anthropic.APITimeoutError(request=_REQUEST)).code is ErrorCode.PROVIDER_TIMEOUT
    assert describe_error(anthropic.APIConnectionError(request=_REQUEST)).code is ErrorCode.PROVIDER_CONNECTION
    assert describe_error(httpx.ReadTimeout("slow")).code is ErrorCode.PROVIDER_TIMEOUT


def test_fallback():
    desc = describe_error(ValueError("weird"))
    assert desc.code is ErrorCode.INTERNAL_ERROR
    assert desc.message == "weird"
    assert describe_error(ValueError()).message == "Unknown error"
