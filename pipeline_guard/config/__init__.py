"""Configuration module."""

from pipeline_guard.config.settings import (
    BudgetSettings,
    CostSettings,
    ObservabilitySettings,
    QualitySettings,
    RetrySettings,
    Settings,
    get_settings,
)

__all__ = [
    "BudgetSettings",
    "CostSettings",
    "ObservabilitySettings",
    "QualitySettings",
    "RetrySettings",
    "Settings",
    "get_settings",
]
