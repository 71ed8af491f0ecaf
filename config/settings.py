"""Pydantic Settings — typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    service_port: int = 5000
    cors_origins: list[str] = ["*"]
    debug: bool = False

    # ── LLM ──────────────────────────────────────────────────
    anthropic_api_key: str = ""
    planning_model: str = "claude-haiku-4-5"  # Fast outline planner
    generation_model: str = "claude-sonnet-4-5"  # Week fill + URL repair
    planning_max_tokens: int = 4096
    generation_max_tokens: int = 8192
    repair_max_tokens: int = 4096

    # ── Agentic loop bounds ──────────────────────────────────
    week_fill_max_iterations: int = 5
    repair_max_turns: int = 3
    web_search_max_uses: int = 5  # Per week-fill conversation
    repair_search_budget_cap: int = 20

    # ── Rate limiting ────────────────────────────────────────
    rate_limit_max_retries: int = 3  # Consecutive throttles on one call before surfacing
    rate_limit_max_wait: int = 120  # seconds
    rate_limit_tick_seconds: float = 1.0
    preflight_rate_limit_check: bool = True
    min_remaining_requests: int = 10  # A 4-week syllabind needs ~12-15 calls
    llm_requests_per_minute: int = 40  # Tier 1 allows 50 RPM; keep headroom
    max_concurrent_llm_calls: int = 10

    # ── Content handling ─────────────────────────────────────
    validate_urls: bool = True
    url_validation_timeout: float = 5.0
    step_stream_delay: float = 0.35  # seconds between step_completed frames
    default_estimated_minutes: int = 60

    # ── Auth / sockets ───────────────────────────────────────
    session_cookie_name: str = "connect.sid"
    session_secret: str = ""
    allow_mock_generation: bool = True


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for application settings."""
    return Settings()
