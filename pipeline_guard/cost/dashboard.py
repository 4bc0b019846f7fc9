"""
Cost Dashboard Aggregation.

Combines today's costs, the month-to-date summary, budget status, the
cost trend and alert counts into one view for dashboards, plus a short
cost section for the daily digest.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from pipeline_guard.cost.alerts import AlertCounts
from pipeline_guard.cost.budget import BudgetStatus, BudgetTracker
from pipeline_guard.cost.queries import (
    CostTrend,
    DailyCost,
    MonthlyCostSummary,
    get_cost_trend,
    get_costs_by_date,
    get_costs_this_month,
)

logger = structlog.get_logger(__name__)

DASHBOARD_TREND_DAYS = 30


def format_currency(amount: float) -> str:
    """
    >>> format_currency(285.5)
    '$285.50'
    """
    return f"${amount:.2f}"


@dataclass(frozen=True)
class CostDashboard:
    """Snapshot of every cost metric."""

    today: DailyCost
    this_month: MonthlyCostSummary
    budget: BudgetStatus
    trend: CostTrend
    alerts: AlertCounts
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "today": self.today.to_dict(),
            "this_month": self.this_month.to_dict(),
            "budget": self.budget.to_dict(),
            "trend": self.trend.to_dict(),
            "alerts": self.alerts.to_dict(),
            "generated_at": self.generated_at,
        }


@dataclass(frozen=True)
class DigestCostSection:
    """Cost lines for the daily digest."""

    today_cost: str
    budget_remaining: str
    days_of_runway: int
    is_over_budget: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "today_cost": self.today_cost,
            "budget_remaining": self.budget_remaining,
            "days_of_runway": self.days_of_runway,
            "is_over_budget": self.is_over_budget,
        }


async def get_cost_dashboard(
    tracker: BudgetTracker,
    trend_days: int = DASHBOARD_TREND_DAYS,
) -> CostDashboard:
    """
    Build the cost dashboard.

    Args:
        tracker: Budget tracker; supplies the store, settings and clock
        trend_days: Trailing window for the cost trend

    Returns:
        CostDashboard for the tracker's current day
    """
    today = tracker.today()
    persistence = tracker.persistence

    today_costs, this_month, budget, trend, alerts = await asyncio.gather(
        get_costs_by_date(persistence, today.isoformat()),
        get_costs_this_month(persistence, today, tracker.settings.monthly_target),
        tracker.status(),
        get_cost_trend(persistence, trend_days, today),
        tracker.alerts.get_alert_counts(),
    )

    dashboard = CostDashboard(
        today=today_costs,
        this_month=this_month,
        budget=budget,
        trend=trend,
        alerts=alerts,
        generated_at=datetime.now(timezone.utc).isoformat(),
    )

    logger.info(
        "Dashboard data generated",
        today_cost=today_costs.total,
        monthly_total=this_month.total,
        budget_remaining=budget.remaining_usd,
        alert_count=alerts.warning_count + alerts.critical_count,
    )
    return dashboard


async def get_cost_summary_for_digest(tracker: BudgetTracker) -> DigestCostSection:
    """Today's cost and the remaining budget, formatted for the digest."""
    today_costs, budget = await asyncio.gather(
        get_costs_by_date(tracker.persistence, tracker.today().isoformat()),
        tracker.status(),
    )

    section = DigestCostSection(
        today_cost=format_currency(today_costs.total),
        budget_remaining=format_currency(budget.remaining_usd),
        days_of_runway=budget.days_of_runway,
        is_over_budget=today_costs.total > tracker.cost_settings.warning_threshold,
    )

    logger.debug(
        "Digest cost summary generated",
        today_cost=today_costs.total,
        budget_remaining=budget.remaining_usd,
    )
    return section
