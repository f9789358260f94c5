"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (or a .env file in dev).
This is the single source of truth for routing configuration - thresholds,
retry policy and budget caps are not hardcoded elsewhere.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = Field(
        default="INFO",
        description="Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=False,
        description="Render logs as JSON (production) instead of console output",
    )

    # ------------------------------------------------------------------ #
    # LiteLLM Proxy (provider client layer)
    # ------------------------------------------------------------------ #
    litellm_base_url: str = Field(
        default="http://localhost:4000",
        description="LiteLLM proxy base URL",
    )
    litellm_api_key: SecretStr = Field(
        default=SecretStr("sk-dev-key"),
        description="API key for LiteLLM proxy",
    )

    # ------------------------------------------------------------------ #
    # Resilience
    # ------------------------------------------------------------------ #
    circuit_breaker_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Success rate below which a provider's circuit opens",
    )
    circuit_half_open_after_seconds: float | None = Field(
        default=None,
        gt=0,
        description=(
            "Let an OPEN circuit admit a probe request after this many seconds. "
            "Leave unset for purely outcome-driven recovery."
        ),
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=5,
        description="Number of rounds over the provider list before giving up",
    )
    retry_base_delay_ms: int = Field(
        default=1000,
        ge=0,
        le=10_000,
        description="Backoff after failed round N is base_delay * N milliseconds",
    )
    provider_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound on a single provider call",
    )

    # ------------------------------------------------------------------ #
    # Cost Governance
    # ------------------------------------------------------------------ #
    daily_cost_cap_usd: float = Field(
        default=10.0,
        gt=0,
        description="Daily spend ceiling; at or above it the cheapest provider is forced",
    )
    budget_warning_threshold: float = Field(default=0.80, gt=0, le=1.0)
    budget_critical_threshold: float = Field(default=0.90, gt=0, le=1.0)
    prioritize_cost: bool = Field(
        default=False,
        description="Default cost priority when a request does not state one",
    )
    prioritize_speed: bool = Field(
        default=False,
        description="Default speed priority when a request does not state one",
    )

    # ------------------------------------------------------------------ #
    # Performance history
    # ------------------------------------------------------------------ #
    min_history_samples: int = Field(
        default=10,
        ge=1,
        description="Samples required before empirical success rate affects confidence",
    )
    latency_reservoir_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Latency samples kept per (provider, task type) for percentiles",
    )

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _validate_budget_thresholds(self) -> Settings:
        if self.budget_warning_threshold >= self.budget_critical_threshold:
            raise ValueError(
                "budget_warning_threshold must be lower than budget_critical_threshold"
            )
        return self

    @model_validator(mode="after")
    def _validate_production_secrets(self) -> Settings:
        """Refuse to start in production with the development proxy key."""
        if self.environment != Environment.PROD:
            return self

        if self.litellm_api_key.get_secret_value().lower() in {"sk-dev-key", "changeme", ""}:
            raise RuntimeError(
                "PRODUCTION STARTUP BLOCKED -- LITELLM_API_KEY contains an insecure "
                "default value. Set a real API key for production."
            )
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton.

    Call directly in non-request contexts (startup, scripts) or pass the
    instance into RoutingService.from_settings().
    """
    return Settings()
