"""
Unit Tests for Cost Dashboard Aggregation.
"""

import pytest

from pipeline_guard.cost.budget import BudgetTracker, calculate_runway
from pipeline_guard.cost.dashboard import (
    format_currency,
    get_cost_dashboard,
    get_cost_summary_for_digest,
)
from pipeline_guard.cost.ledger import CostLedger
from pipeline_guard.cost.queries import TrendDirection


@pytest.fixture
def tracker(persistence, budget_settings, cost_settings, transport, clock) -> BudgetTracker:
    return BudgetTracker(
        persistence,
        settings=budget_settings,
        cost_settings=cost_settings,
        transport=transport,
        clock=clock,
    )


async def book_video(tracker: BudgetTracker, day: str, amount: float) -> None:
    ledger = CostLedger(day, "tts", tracker.persistence)
    ledger.record_call("chirp3-hd", cost_usd=amount)
    await ledger.persist()
    await tracker.record_spend(amount, day)


class TestCostDashboard:
    """Test cases for get_cost_dashboard."""

    @pytest.mark.asyncio
    async def test_combines_all_sections(self, tracker: BudgetTracker) -> None:
        """Test that the dashboard reflects today, month, budget, trend and alerts."""
        await book_video(tracker, "2026-01-21", 0.40)
        await book_video(tracker, "2026-01-22", 0.47)
        await tracker.alerts.check_thresholds(0.82, "2026-01-22")

        dashboard = await get_cost_dashboard(tracker)

        assert dashboard.today.date == "2026-01-22"
        assert dashboard.today.total == 0.47
        assert dashboard.this_month.total == 0.87
        assert dashboard.this_month.video_count == 2
        assert dashboard.this_month.budget_comparison.target == 50.0
        assert dashboard.budget.remaining_usd == 299.13
        assert dashboard.budget.days_of_runway == calculate_runway(299.13, 0.435)
        assert dashboard.trend.period_days == 30
        assert dashboard.trend.summary.trend == TrendDirection.INCREASING
        assert dashboard.alerts.warning_count == 1

    @pytest.mark.asyncio
    async def test_empty_store(self, tracker: BudgetTracker) -> None:
        dashboard = await get_cost_dashboard(tracker, trend_days=7)

        assert dashboard.today.total == 0.0
        assert dashboard.this_month.total == 0.0
        assert dashboard.budget.remaining_usd == 300.0
        assert dashboard.trend.period_days == 7
        assert dashboard.alerts.warning_count == 0
        assert set(dashboard.to_dict()) == {
            "today", "this_month", "budget", "trend", "alerts", "generated_at",
        }


class TestDigestSummary:
    """Test cases for get_cost_summary_for_digest."""

    def test_format_currency(self) -> None:
        assert format_currency(285.5) == "$285.50"
        assert format_currency(0.4712) == "$0.47"

    @pytest.mark.asyncio
    async def test_digest_section(self, tracker: BudgetTracker) -> None:
        await book_video(tracker, "2026-01-22", 0.47)

        section = await get_cost_summary_for_digest(tracker)

        assert section.today_cost == "$0.47"
        assert section.budget_remaining == "$299.53"
        assert section.days_of_runway == calculate_runway(299.53, 0.47)
        assert not section.is_over_budget

    @pytest.mark.asyncio
    async def test_over_warning_threshold(self, tracker: BudgetTracker) -> None:
        """Test that a day above the warning threshold is flagged."""
        await book_video(tracker, "2026-01-22", 0.80)

        section = await get_cost_summary_for_digest(tracker)

        assert section.is_over_budget
