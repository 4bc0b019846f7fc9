"""
Unit Tests for Cost Threshold Alerting.

Tests threshold classification, per-severity cooldown and monthly counts.
"""

import pytest

from pipeline_guard.cost.alerts import ALERTS_DOC_ID, BUDGET_COLLECTION, CostAlertMonitor
from pipeline_guard.observability.alerting import AlertSeverity


@pytest.fixture
def monitor(persistence, transport, cost_settings, clock) -> CostAlertMonitor:
    return CostAlertMonitor(persistence, transport, cost_settings, clock)


class TestClassification:
    """Test cases for threshold classification."""

    @pytest.mark.parametrize(
        "cost,severity",
        [
            (0.74, None),
            (0.75, AlertSeverity.WARNING),
            (0.99, AlertSeverity.WARNING),
            (1.00, AlertSeverity.CRITICAL),
            (2.50, AlertSeverity.CRITICAL),
        ],
    )
    def test_thresholds_inclusive(self, monitor: CostAlertMonitor, cost: float, severity) -> None:
        """Test that thresholds trigger at or above their value."""
        breach = monitor.classify(cost)

        assert (breach[0] if breach else None) == severity


class TestCostAlertMonitor:
    """Test cases for CostAlertMonitor."""

    @pytest.mark.asyncio
    async def test_below_threshold_does_nothing(self, monitor: CostAlertMonitor, transport) -> None:
        result = await monitor.check_thresholds(0.40, "2026-01-22")

        assert not result.triggered
        assert transport.warnings == []
        assert transport.criticals == []

    @pytest.mark.asyncio
    async def test_warning_sent(self, monitor: CostAlertMonitor, transport) -> None:
        """Test that a warning breach is delivered with its payload."""
        result = await monitor.check_thresholds(0.82, "2026-01-22", {"gemini": 0.5, "tts": 0.32})

        assert result.triggered
        assert result.sent
        assert result.severity == AlertSeverity.WARNING
        payload = transport.warnings[0]
        assert payload["pipeline_id"] == "2026-01-22"
        assert payload["video_cost"] == 0.82
        assert payload["threshold"] == 0.75
        assert payload["breakdown"] == {"gemini": 0.5, "tts": 0.32}

    @pytest.mark.asyncio
    async def test_cooldown_counts_but_does_not_send(self, monitor: CostAlertMonitor, transport, clock) -> None:
        """Test that a repeat breach inside the cooldown is counted, not sent."""
        await monitor.check_thresholds(1.20, "2026-01-22")
        clock.advance(minutes=30)

        result = await monitor.check_thresholds(1.30, "2026-01-22")

        assert result.triggered
        assert not result.sent
        assert result.reason == "cooldown"
        assert len(transport.criticals) == 1
        counts = await monitor.get_alert_counts()
        assert counts.critical_count == 2

    @pytest.mark.asyncio
    async def test_cooldown_expires(self, monitor: CostAlertMonitor, transport, clock) -> None:
        """Test that alerts resume once the cooldown window passes."""
        await monitor.check_thresholds(1.20, "2026-01-22")
        clock.advance(hours=1)

        result = await monitor.check_thresholds(1.20, "2026-01-23")

        assert result.sent
        assert len(transport.criticals) == 2

    @pytest.mark.asyncio
    async def test_cooldown_is_per_severity(self, monitor: CostAlertMonitor, transport, clock) -> None:
        """Test that a critical alert does not suppress a warning."""
        await monitor.check_thresholds(1.20, "2026-01-22")
        clock.advance(minutes=5)

        result = await monitor.check_thresholds(0.80, "2026-01-22")

        assert result.sent
        assert len(transport.warnings) == 1

    @pytest.mark.asyncio
    async def test_send_failure_is_reported_not_raised(
        self, persistence, failing_transport, cost_settings, clock
    ) -> None:
        """Test that delivery failures never propagate."""
        monitor = CostAlertMonitor(persistence, failing_transport, cost_settings, clock)

        result = await monitor.check_thresholds(0.90, "2026-01-22")

        assert result.triggered
        assert not result.sent
        assert result.reason.startswith("send failed")
        counts = await monitor.get_alert_counts()
        assert counts.warning_count == 1
        assert counts.last_warning_at is None

    @pytest.mark.asyncio
    async def test_failed_send_does_not_start_cooldown(
        self, persistence, failing_transport, cost_settings, clock
    ) -> None:
        """Test that the next breach after a failed send is attempted again."""
        monitor = CostAlertMonitor(persistence, failing_transport, cost_settings, clock)
        await monitor.check_thresholds(0.90, "2026-01-22")
        failing_transport.fail = False

        result = await monitor.check_thresholds(0.90, "2026-01-22")

        assert result.sent

    @pytest.mark.asyncio
    async def test_counts_reset_each_month(self, monitor: CostAlertMonitor, clock) -> None:
        """Test that a new month starts with fresh counts and no cooldown."""
        await monitor.check_thresholds(1.20, "2026-01-22")
        clock.advance(days=10)

        counts = await monitor.get_alert_counts()

        assert counts.month == "2026-02"
        assert counts.critical_count == 0

    @pytest.mark.asyncio
    async def test_reset_alert_counts(self, monitor: CostAlertMonitor, persistence) -> None:
        await monitor.check_thresholds(0.80, "2026-01-22")
        await monitor.reset_alert_counts()

        doc = await persistence.get_document(BUDGET_COLLECTION, ALERTS_DOC_ID)

        assert doc["warning_count"] == 0
        assert doc["last_warning_at"] is None
