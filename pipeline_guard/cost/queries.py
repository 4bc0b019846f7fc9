"""
Cost queries over persisted pipeline cost documents.

One pipeline run per day, so a date doubles as the run identifier.
"""

import asyncio
import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog

from pipeline_guard.cost.ledger import (
    COST_DOC_ID,
    CostCategory,
    ServiceCostBreakdown,
    pipelines_collection,
    round_cost,
    validate_pipeline_id,
)
from pipeline_guard.storage.persistence import Persistence

logger = structlog.get_logger(__name__)

MAX_TREND_DAYS = 365
TREND_STABLE_BAND_PCT = 5.0


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True)
class DailyCost:
    """Costs recorded for one day."""

    date: str
    total: float
    video_count: int
    categories: dict[str, float] = field(default_factory=dict)
    stages: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "total": self.total,
            "video_count": self.video_count,
            "categories": dict(self.categories),
            "stages": dict(self.stages),
        }


@dataclass(frozen=True)
class CostTrendPoint:
    date: str
    total: float
    change_from_previous: float
    percent_change: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "total": self.total,
            "change_from_previous": self.change_from_previous,
            "percent_change": self.percent_change,
        }


@dataclass(frozen=True)
class CostTrendSummary:
    avg_daily: float
    min_daily: float
    max_daily: float
    total_cost: float
    total_videos: int
    trend: TrendDirection
    trend_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg_daily": self.avg_daily,
            "min_daily": self.min_daily,
            "max_daily": self.max_daily,
            "total_cost": self.total_cost,
            "total_videos": self.total_videos,
            "trend": self.trend.value,
            "trend_percent": self.trend_percent,
        }


@dataclass(frozen=True)
class CostTrend:
    """Daily costs over a trailing window, most recent day first."""

    period_days: int
    data_points: tuple[CostTrendPoint, ...]
    summary: CostTrendSummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_days": self.period_days,
            "data_points": [p.to_dict() for p in self.data_points],
            "summary": self.summary.to_dict(),
        }


@dataclass(frozen=True)
class StageCostDetail:
    stage: str
    cost: float
    services: tuple[ServiceCostBreakdown, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "cost": self.cost,
            "services": [s.to_dict() for s in self.services],
        }


@dataclass(frozen=True)
class VideoCostBreakdown:
    """Costs of one video, compared against the per-video target."""

    pipeline_id: str
    total: float
    categories: dict[str, float]
    stages: tuple[StageCostDetail, ...]
    target: float
    within_target: bool
    percent_of_target: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_id": self.pipeline_id,
            "total": self.total,
            "categories": dict(self.categories),
            "stages": [s.to_dict() for s in self.stages],
            "budget_comparison": {
                "target": self.target,
                "within_target": self.within_target,
                "percent_of_target": self.percent_of_target,
            },
        }


@dataclass(frozen=True)
class MonthlyBudgetComparison:
    target: float
    on_track: bool
    projected: float
    days_remaining: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "on_track": self.on_track,
            "projected": self.projected,
            "days_remaining": self.days_remaining,
        }


@dataclass(frozen=True)
class MonthlyCostSummary:
    """Month-to-date costs. daily_breakdown only lists days with cost."""

    month: str
    total: float
    video_count: int
    avg_per_video: float
    daily_breakdown: dict[str, float]
    categories: dict[str, float]
    budget_comparison: MonthlyBudgetComparison

    def to_dict(self) -> dict[str, Any]:
        return {
            "month": self.month,
            "total": self.total,
            "video_count": self.video_count,
            "avg_per_video": self.avg_per_video,
            "daily_breakdown": dict(self.daily_breakdown),
            "categories": dict(self.categories),
            "budget_comparison": self.budget_comparison.to_dict(),
        }


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def last_n_dates(days: int, today: date | None = None) -> list[str]:
    """The last `days` dates ending today, most recent first."""
    end = today or today_utc()
    return [(end - timedelta(days=offset)).isoformat() for offset in range(days)]


async def get_costs_by_date(persistence: Persistence, day: str) -> DailyCost:
    """Load the cost document of one day's pipeline run."""
    validate_pipeline_id(day)
    doc = await persistence.get_document(pipelines_collection(day), COST_DOC_ID)
    if not doc:
        return DailyCost(date=day, total=0.0, video_count=0)

    categories = {c.value: float(doc.get(c.value, 0.0)) for c in CostCategory}
    stages = {name: float(s.get("total", 0.0)) for name, s in doc.get("stages", {}).items()}
    return DailyCost(
        date=day,
        total=float(doc.get("total", 0.0)),
        video_count=1,
        categories=categories,
        stages=stages,
    )


async def get_costs_by_video(
    persistence: Persistence,
    pipeline_id: str,
    target_per_video: float | None = None,
) -> VideoCostBreakdown:
    """
    Per-stage cost breakdown of one pipeline run, compared against the
    per-video target (the credit-period target by default).
    """
    validate_pipeline_id(pipeline_id)
    if target_per_video is None:
        from pipeline_guard.config.settings import get_settings
        target_per_video = get_settings().budget.credit_period_per_video

    doc = await persistence.get_document(pipelines_collection(pipeline_id), COST_DOC_ID)
    if not doc:
        logger.debug("No cost data found for video", pipeline_id=pipeline_id)
        return VideoCostBreakdown(
            pipeline_id=pipeline_id,
            total=0.0,
            categories={c.value: 0.0 for c in CostCategory},
            stages=(),
            target=target_per_video,
            within_target=True,
            percent_of_target=0.0,
        )

    total = float(doc.get("total", 0.0))
    stages = tuple(
        StageCostDetail(
            stage=name,
            cost=float(stage_doc.get("total", 0.0)),
            services=tuple(
                ServiceCostBreakdown.from_dict(item) for item in stage_doc.get("breakdown", [])
            ),
        )
        for name, stage_doc in doc.get("stages", {}).items()
    )
    percent = round_cost(total / target_per_video * 100) if target_per_video > 0 else 0.0

    logger.debug("Retrieved video cost data", pipeline_id=pipeline_id, total=total)
    return VideoCostBreakdown(
        pipeline_id=pipeline_id,
        total=total,
        categories={c.value: float(doc.get(c.value, 0.0)) for c in CostCategory},
        stages=stages,
        target=target_per_video,
        within_target=total <= target_per_video,
        percent_of_target=percent,
    )


def days_remaining_in_month(today: date) -> int:
    """Days left in the month after today."""
    return calendar.monthrange(today.year, today.month)[1] - today.day


async def get_daily_costs_this_month(
    persistence: Persistence,
    today: date | None = None,
) -> list[DailyCost]:
    """Daily costs from the first of the month up to today, oldest first."""
    end = today or today_utc()
    days = [end.replace(day=d).isoformat() for d in range(1, end.day + 1)]
    return list(await asyncio.gather(*(get_costs_by_date(persistence, d) for d in days)))


async def get_costs_this_month(
    persistence: Persistence,
    today: date | None = None,
    monthly_target: float | None = None,
) -> MonthlyCostSummary:
    """
    Month-to-date cost summary with an end-of-month projection.

    The projection extends the month-to-date daily average (over every
    elapsed day, including days without a run) across the days left.
    """
    end = today or today_utc()
    if monthly_target is None:
        from pipeline_guard.config.settings import get_settings
        monthly_target = get_settings().budget.monthly_target

    daily = await get_daily_costs_this_month(persistence, end)

    total = Decimal("0")
    video_count = 0
    categories = {c.value: Decimal("0") for c in CostCategory}
    daily_breakdown: dict[str, float] = {}
    for day in daily:
        total += Decimal(str(day.total))
        video_count += day.video_count
        for name, amount in day.categories.items():
            categories[name] += Decimal(str(amount))
        if day.total > 0:
            daily_breakdown[day.date] = day.total

    total_cost = round_cost(total)
    days_remaining = days_remaining_in_month(end)
    avg_daily = round_cost(total / len(daily)) if daily else 0.0
    projected = round_cost(total_cost + avg_daily * days_remaining)

    summary = MonthlyCostSummary(
        month=end.strftime("%Y-%m"),
        total=total_cost,
        video_count=video_count,
        avg_per_video=round_cost(total / video_count) if video_count else 0.0,
        daily_breakdown=daily_breakdown,
        categories={name: round_cost(value) for name, value in categories.items()},
        budget_comparison=MonthlyBudgetComparison(
            target=monthly_target,
            on_track=projected <= monthly_target,
            projected=projected,
            days_remaining=days_remaining,
        ),
    )

    logger.info(
        "Calculated monthly cost summary",
        month=summary.month,
        total=summary.total,
        video_count=video_count,
        projected=projected,
    )
    return summary


async def get_cost_trend(
    persistence: Persistence,
    days: int = 7,
    today: date | None = None,
) -> CostTrend:
    """
    Build the cost trend for the trailing `days` days.

    The average is taken over days that recorded any cost. The trend
    compares the first and last days with cost; changes within
    +/-5% are reported as stable.
    """
    period_days = max(1, min(days, MAX_TREND_DAYS))
    dates = last_n_dates(period_days, today)
    daily = [await get_costs_by_date(persistence, d) for d in reversed(dates)]

    points: list[CostTrendPoint] = []
    total_cost = 0.0
    total_videos = 0
    min_daily: float | None = None
    max_daily = 0.0

    for idx, current in enumerate(daily):
        previous = daily[idx - 1] if idx > 0 else None
        change = round_cost(current.total - previous.total) if previous else 0.0
        percent = (
            round_cost((current.total - previous.total) / previous.total * 100)
            if previous and previous.total > 0
            else 0.0
        )
        points.append(CostTrendPoint(current.date, current.total, change, percent))

        total_cost = round_cost(total_cost + current.total)
        total_videos += current.video_count
        if current.total > 0:
            min_daily = current.total if min_daily is None else min(min_daily, current.total)
            max_daily = max(max_daily, current.total)

    with_cost = [p for p in points if p.total > 0]
    direction = TrendDirection.STABLE
    trend_percent = 0.0
    if len(with_cost) >= 2:
        first, last = with_cost[0], with_cost[-1]
        trend_percent = round_cost((last.total - first.total) / first.total * 100)
        if trend_percent > TREND_STABLE_BAND_PCT:
            direction = TrendDirection.INCREASING
        elif trend_percent < -TREND_STABLE_BAND_PCT:
            direction = TrendDirection.DECREASING

    avg_daily = round_cost(total_cost / len(with_cost)) if with_cost else 0.0

    trend = CostTrend(
        period_days=period_days,
        data_points=tuple(reversed(points)),
        summary=CostTrendSummary(
            avg_daily=avg_daily,
            min_daily=min_daily or 0.0,
            max_daily=max_daily,
            total_cost=total_cost,
            total_videos=total_videos,
            trend=direction,
            trend_percent=abs(trend_percent),
        ),
    )

    logger.debug(
        "Calculated cost trend",
        period_days=period_days,
        avg_daily=avg_daily,
        trend=direction.value,
    )
    return trend
