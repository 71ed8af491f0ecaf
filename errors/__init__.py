"""Custom exception hierarchy for the Syllabind generation service."""

from errors.exceptions import (
    GatewayRejection,
    GenerationCancelled,
    GenerationError,
    PlanningError,
    ProviderRateLimitError,
    StepValidationError,
    ToolPayloadError,
    WeekStalledError,
)

__all__ = [
    "GatewayRejection",
    "GenerationCancelled",
    "GenerationError",
    "PlanningError",
    "ProviderRateLimitError",
    "StepValidationError",
    "ToolPayloadError",
    "WeekStalledError",
]
