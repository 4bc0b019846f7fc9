"""
Pytest Configuration and Shared Fixtures.

This module provides shared fixtures for testing the pipeline reliability
and quality layer.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import patch

import pytest

from pipeline_guard.config.settings import (
    BudgetSettings,
    CostSettings,
    QualitySettings,
    Settings,
    get_settings,
)
from pipeline_guard.core.types import (
    ProviderInfo,
    ProviderTier,
    QualityReport,
    StageResult,
)
from pipeline_guard.cost.ledger import CostSummary
from pipeline_guard.observability.alerting import AlertTransport
from pipeline_guard.storage.persistence import InMemoryPersistence


PIPELINE_ID = "2026-01-22"


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Provide settings built from a controlled environment."""
    with patch.dict(
        "os.environ",
        {
            "RETRY_MAX_RETRIES": "2",
            "COST_WARNING_THRESHOLD": "0.75",
            "QUALITY_WORD_COUNT_MIN": "1200",
            "OBSERVABILITY_LOG_FORMAT": "console",
        },
    ):
        # Clear cache and get fresh settings
        get_settings.cache_clear()
        settings = get_settings()
    get_settings.cache_clear()
    return settings


@pytest.fixture
def cost_settings() -> CostSettings:
    return CostSettings()


@pytest.fixture
def budget_settings() -> BudgetSettings:
    return BudgetSettings()


@pytest.fixture
def quality_settings() -> QualitySettings:
    return QualitySettings()


# =============================================================================
# Storage and Clock Fixtures
# =============================================================================


@pytest.fixture
def persistence() -> InMemoryPersistence:
    """Fresh in-memory document store."""
    return InMemoryPersistence()


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at noon UTC on the sample pipeline day."""
    return FakeClock(datetime(2026, 1, 22, 12, 0, tzinfo=timezone.utc))


# =============================================================================
# Alert Transport Fixtures
# =============================================================================


class RecordingTransport(AlertTransport):
    """Alert transport that remembers what it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.warnings: list[dict[str, Any]] = []
        self.criticals: list[dict[str, Any]] = []

    async def send_warning_alert(self, payload: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("webhook unreachable")
        self.warnings.append(payload)

    async def send_critical_alert(self, payload: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("webhook unreachable")
        self.criticals.append(payload)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def failing_transport() -> RecordingTransport:
    return RecordingTransport(fail=True)


# =============================================================================
# Provider Fixtures
# =============================================================================


class StubProvider:
    """
    Provider that replays a scripted sequence of outcomes.

    Each outcome is either a value to return or an exception to raise.
    The last outcome repeats once the script runs out.
    """

    def __init__(self, name: str, outcomes: list[Any]):
        self.name = name
        self._outcomes = list(outcomes)
        self.calls = 0

    async def invoke(self, *args: Any, **kwargs: Any) -> Any:
        self.calls += 1
        outcome = self._outcomes[min(self.calls - 1, len(self._outcomes) - 1)]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def make_provider() -> Callable[..., StubProvider]:
    def factory(name: str, *outcomes: Any) -> StubProvider:
        return StubProvider(name, list(outcomes))
    return factory


# =============================================================================
# Stage Result Fixtures
# =============================================================================


def build_stage_result(
    stage: str,
    measurements: dict[str, Any] | None = None,
    provider: str = "primary-provider",
    tier: ProviderTier = ProviderTier.PRIMARY,
    attempts: int = 1,
    cost_usd: float = 0.0,
    data: Any = None,
    artifacts: tuple[dict[str, Any], ...] = (),
    warnings: tuple[str, ...] = (),
) -> StageResult:
    """Build a successful StageResult for one stage."""
    return StageResult(
        success=True,
        data=data if data is not None else {},
        cost_summary=CostSummary(
            pipeline_id=PIPELINE_ID,
            stage=stage,
            total_cost_usd=cost_usd,
        ),
        quality_report=QualityReport(stage=stage, measurements=measurements or {}),
        duration_ms=10,
        provider_info=ProviderInfo(name=provider, tier=tier, attempts=attempts),
        warnings=warnings,
        artifacts=artifacts,
    )


@pytest.fixture
def make_stage_result() -> Callable[..., StageResult]:
    return build_stage_result


@pytest.fixture
def clean_stages() -> dict[str, StageResult]:
    """A pipeline run with no quality issues."""
    return {
        "script-gen": build_stage_result("script-gen", {"word_count": 1500}, provider="gemini-2.5-pro"),
        "pronunciation": build_stage_result("pronunciation", {"unresolved_count": 0}),
        "tts": build_stage_result("tts", provider="gemini-tts"),
        "visual-gen": build_stage_result(
            "visual-gen", {"fallback_count": 0, "total_scenes": 20}, provider="imagen"
        ),
        "thumbnail": build_stage_result("thumbnail", provider="imagen"),
        "render": build_stage_result(
            "render",
            artifacts=({"type": "video", "url": "gs://bucket/2026-01-22/video.mp4"},),
        ),
    }
