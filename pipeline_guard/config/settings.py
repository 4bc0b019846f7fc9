"""
Application Settings - Pydantic Settings for configuration management.

Supports environment variables and .env file loading.
"""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import BeforeValidator, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def normalize_to_uppercase(v: str) -> str:
    """Normalize string to uppercase."""
    if isinstance(v, str):
        return v.upper()
    return v


class RetrySettings(BaseSettings):
    """Default retry policy settings for provider calls."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay_ms: int = Field(default=1000, ge=0, description="Base backoff delay in milliseconds")
    max_delay_ms: int = Field(default=30000, ge=0, description="Backoff delay ceiling in milliseconds")
    timeout_ms: int | None = Field(default=None, ge=1, description="Per-attempt deadline in milliseconds")


class CostSettings(BaseSettings):
    """Per-video cost thresholds and alerting settings."""

    model_config = SettingsConfigDict(env_prefix="COST_")

    warning_threshold: float = Field(default=0.75, ge=0.0, description="Per-video cost that raises a WARNING alert")
    critical_threshold: float = Field(default=1.00, ge=0.0, description="Per-video cost that raises a CRITICAL alert")
    alert_cooldown_seconds: int = Field(default=3600, ge=0, description="Minimum time between alerts of one severity")
    publish_ceiling: float = Field(default=1.50, ge=0.0, description="Per-video cost above which publishing needs review")


class BudgetSettings(BaseSettings):
    """Credit budget and runway settings."""

    model_config = SettingsConfigDict(env_prefix="BUDGET_")

    default_credit: float = Field(default=300.0, ge=0.0, description="Initial credit in USD")
    credit_expiration_days: int = Field(default=90, ge=1, description="Days until the credit expires")
    monthly_target: float = Field(default=50.0, ge=0.0, description="Target monthly spend in USD")
    credit_period_per_video: float = Field(default=0.50, ge=0.0, description="Per-video target while on credit")
    post_credit_per_video: float = Field(default=1.50, ge=0.0, description="Per-video target after credit expires")
    trend_window_days: int = Field(default=7, ge=1, le=365, description="Trailing window for average daily cost")


class QualitySettings(BaseSettings):
    """Quality gate and pre-publish decision thresholds."""

    model_config = SettingsConfigDict(env_prefix="QUALITY_")

    # Script bounds (inclusive)
    word_count_min: int = Field(default=1200, ge=0, description="Minimum script word count")
    word_count_max: int = Field(default=1800, ge=0, description="Maximum script word count")
    word_count_edge_margin: float = Field(
        default=0.05, ge=0.0, le=0.5, description="Fraction of a bound treated as the edge zone"
    )

    # Audio/video gates
    max_silence_pct: float = Field(default=5.0, ge=0.0, description="Silence percentage that fails narration")
    max_audio_sync_ms: float = Field(default=100.0, ge=0.0, description="Audio sync offset that fails a render")
    thumbnail_variants: int = Field(default=3, ge=1, description="Required thumbnail variant count")

    # Research gate
    research_min_words: int = Field(default=1800, ge=0, description="Minimum research brief word count")
    research_max_words: int = Field(default=2500, ge=0, description="Research brief size that raises a warning")

    # Pre-publish detectors
    visual_fallback_major_ratio: float = Field(
        default=0.30, ge=0.0, le=1.0, description="Fallback visual ratio above which the issue is major"
    )
    pronunciation_major_threshold: int = Field(
        default=3, ge=0, description="Unresolved terms above which the issue is major"
    )
    retry_attempts_threshold: int = Field(
        default=2, ge=1, description="Attempts above which a primary provider is flagged"
    )
    max_minor_issues: int = Field(
        default=2, ge=0, description="Minor issues tolerated before human review"
    )
    critical_provider_stages: list[str] = Field(
        default_factory=lambda: ["tts"],
        description="Stages whose provider fallback is a major issue",
    )


class ObservabilitySettings(BaseSettings):
    """Observability and notification settings."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_")

    # Logging
    log_format: Literal["json", "console"] = Field(
        default="json", description="Log format (json for production, console for development)"
    )

    # Alerting
    alerting_enabled: bool = Field(default=False, description="Send cost alerts to webhooks")
    warning_webhook_url: str | None = Field(default=None, description="Webhook URL for WARNING alerts")
    warning_webhook_channel: Literal["slack", "discord", "webhook"] = Field(
        default="discord", description="Payload format of the WARNING webhook"
    )
    critical_webhook_url: str | None = Field(default=None, description="Webhook URL for CRITICAL alerts")
    critical_webhook_channel: Literal["slack", "discord", "webhook"] = Field(
        default="slack", description="Payload format of the CRITICAL webhook"
    )
    webhook_timeout_seconds: int = Field(default=10, ge=1, description="Webhook request timeout")


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="Pipeline Guard", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    log_level: Annotated[
        Literal["DEBUG", "INFO", "WARNING", "ERROR"],
        BeforeValidator(normalize_to_uppercase),
    ] = Field(default="INFO", description="Logging level")

    # Sub-settings
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cost: CostSettings = Field(default_factory=CostSettings)
    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    quality: QualitySettings = Field(default_factory=QualitySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
