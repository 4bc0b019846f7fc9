"""
Unit Tests for the Budget Tracker.

Tests runway calculation, budget state, spend recording and monthly history.
"""

import pytest

from pipeline_guard.core.errors import PipelineError
from pipeline_guard.cost.budget import (
    RUNWAY_UNBOUNDED_DAYS,
    BudgetTracker,
    calculate_runway,
)
from pipeline_guard.cost.ledger import CostLedger


@pytest.fixture
def tracker(persistence, budget_settings, cost_settings, transport, clock) -> BudgetTracker:
    return BudgetTracker(
        persistence,
        settings=budget_settings,
        cost_settings=cost_settings,
        transport=transport,
        clock=clock,
    )


async def store_cost(persistence, day: str, amount: float) -> None:
    ledger = CostLedger(day, "tts", persistence)
    ledger.record_call("chirp3-hd", cost_usd=amount)
    await ledger.persist()


class TestCalculateRunway:
    """Test cases for calculate_runway."""

    def test_no_spend_is_unbounded(self) -> None:
        """Test that zero average cost gives the unbounded sentinel."""
        assert calculate_runway(285.50, 0) == RUNWAY_UNBOUNDED_DAYS == 999

    def test_exhausted_budget(self) -> None:
        """Test that an empty budget has no runway."""
        assert calculate_runway(0, 0.47) == 0
        assert calculate_runway(-3.20, 0.47) == 0

    def test_runway_is_floored(self) -> None:
        """Test that runway rounds down to whole days."""
        assert calculate_runway(285.50, 0.47) == 607


class TestBudgetTracker:
    """Test cases for BudgetTracker."""

    # =========================================================================
    # Initialization Tests
    # =========================================================================

    @pytest.mark.asyncio
    async def test_initialize_defaults(self, tracker: BudgetTracker) -> None:
        """Test default credit and expiration."""
        state = await tracker.initialize()

        assert state.initial_credit_usd == 300.0
        assert state.remaining_usd == 300.0
        assert state.total_spent_usd == 0.0
        assert state.start_date == "2026-01-22"
        assert state.credit_expiration_date == "2026-04-22"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, tracker: BudgetTracker) -> None:
        """Test that an existing budget is never overwritten."""
        await tracker.initialize(300.0)
        state = await tracker.initialize(1000.0)

        assert state.initial_credit_usd == 300.0

    @pytest.mark.asyncio
    async def test_initialize_rejects_negative_credit(self, tracker: BudgetTracker) -> None:
        with pytest.raises(PipelineError) as exc_info:
            await tracker.initialize(-1.0)

        assert exc_info.value.code == "BUDGET_INVALID_AMOUNT"

    @pytest.mark.asyncio
    async def test_get_state_auto_initializes(self, tracker: BudgetTracker) -> None:
        """Test that reading the budget creates it when missing."""
        state = await tracker.get_state()

        assert state.initial_credit_usd == 300.0

    # =========================================================================
    # Spend Tests
    # =========================================================================

    @pytest.mark.asyncio
    async def test_record_spend(self, tracker: BudgetTracker) -> None:
        """Test that spend reduces the remaining credit."""
        await tracker.record_spend(0.47, "2026-01-22")
        state = await tracker.record_spend(0.53, "2026-01-22")

        assert state.total_spent_usd == 1.0
        assert state.remaining_usd == 299.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [-0.01, float("nan")])
    async def test_record_spend_rejects_invalid_amounts(self, tracker: BudgetTracker, amount: float) -> None:
        with pytest.raises(PipelineError) as exc_info:
            await tracker.record_spend(amount)

        assert exc_info.value.code == "BUDGET_INVALID_AMOUNT"

    @pytest.mark.asyncio
    async def test_overrun_keeps_negative_remaining(self, tracker: BudgetTracker) -> None:
        """Test that the stored remainder can go negative but status clamps it."""
        await tracker.initialize(1.0)
        state = await tracker.record_spend(1.25)

        assert state.remaining_usd == -0.25
        status = await tracker.status()
        assert status.remaining_usd == 0.0

    @pytest.mark.asyncio
    async def test_monthly_history(self, tracker: BudgetTracker) -> None:
        """Test that spend accumulates per month and per day."""
        await tracker.record_spend(0.40, "2026-01-21")
        await tracker.record_spend(0.60, "2026-01-22")
        await tracker.record_spend(0.30, "2026-02-01")

        january = await tracker.get_monthly_history("2026-01")

        assert january.monthly_spent == 1.0
        assert january.video_count == 2
        assert january.avg_cost_per_video == 0.5
        assert january.days == {"2026-01-21": 0.4, "2026-01-22": 0.6}
        assert (await tracker.get_monthly_history("2026-02")).monthly_spent == 0.3

    @pytest.mark.asyncio
    async def test_monthly_history_defaults_to_current_month(self, tracker: BudgetTracker) -> None:
        await tracker.record_spend(0.40, "2026-01-22")

        history = await tracker.get_monthly_history()

        assert history.month == "2026-01"

    @pytest.mark.asyncio
    async def test_reset(self, tracker: BudgetTracker) -> None:
        """Test that reset discards spend and applies the new credit."""
        await tracker.record_spend(10.0)
        state = await tracker.reset(500.0)

        assert state.initial_credit_usd == 500.0
        assert state.total_spent_usd == 0.0

    # =========================================================================
    # Status Tests
    # =========================================================================

    @pytest.mark.asyncio
    async def test_status_runway_and_projection(self, tracker: BudgetTracker, persistence) -> None:
        """Test runway and monthly projection from the trailing average."""
        await store_cost(persistence, "2026-01-21", 0.40)
        await store_cost(persistence, "2026-01-22", 0.54)
        await tracker.record_spend(14.50)

        status = await tracker.status()

        assert status.avg_daily_cost_usd == 0.47
        assert status.remaining_usd == 285.5
        assert status.days_of_runway == 607
        assert status.projected_monthly_usd == 14.1
        assert status.within_budget
        assert status.within_credit_period

    @pytest.mark.asyncio
    async def test_status_without_history(self, tracker: BudgetTracker) -> None:
        """Test that no recorded costs give unbounded runway."""
        status = await tracker.status()

        assert status.days_of_runway == 999
        assert status.projected_monthly_usd == 0.0

    @pytest.mark.asyncio
    async def test_over_monthly_target(self, tracker: BudgetTracker, persistence) -> None:
        """Test that a projection above the monthly target is out of budget."""
        await store_cost(persistence, "2026-01-22", 2.00)

        status = await tracker.status()

        assert status.projected_monthly_usd == 60.0
        assert not status.within_budget

    @pytest.mark.asyncio
    async def test_credit_period_ends_on_expiration_day(self, tracker: BudgetTracker, clock) -> None:
        await tracker.initialize()
        clock.advance(days=90)

        status = await tracker.status()

        assert not status.within_credit_period

    def test_per_video_target(self, tracker: BudgetTracker) -> None:
        assert tracker.per_video_target(within_credit_period=True) == 0.50
        assert tracker.per_video_target(within_credit_period=False) == 1.50

    # =========================================================================
    # Threshold Tests
    # =========================================================================

    @pytest.mark.asyncio
    async def test_check_thresholds_includes_budget_remaining(self, tracker: BudgetTracker, transport) -> None:
        """Test that alerts carry the remaining budget."""
        await tracker.record_spend(14.50)

        result = await tracker.check_thresholds(1.10, "2026-01-22", {"tts": 0.6, "gemini": 0.5})

        assert result.sent
        assert transport.criticals[0]["budget_remaining"] == 285.5
        assert transport.criticals[0]["breakdown"] == {"tts": 0.6, "gemini": 0.5}
