"""
Budget Tracker.

Tracks spend against the initial credit:
- Remaining credit and credit expiration
- Runway projection from the trailing average daily cost
- Monthly spend history
- Per-video cost threshold alerts
"""

import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

import structlog

from pipeline_guard.config.settings import BudgetSettings, CostSettings
from pipeline_guard.core.errors import ErrorCode, PipelineError
from pipeline_guard.cost.alerts import (
    BUDGET_COLLECTION,
    Clock,
    CostAlertMonitor,
    ThresholdCheckResult,
    utc_now,
)
from pipeline_guard.cost.ledger import round_cost
from pipeline_guard.cost.queries import get_cost_trend
from pipeline_guard.observability.alerting import AlertTransport
from pipeline_guard.storage.persistence import Persistence

logger = structlog.get_logger(__name__)

BUDGET_DOC_ID = "current"
BUDGET_HISTORY_COLLECTION = f"{BUDGET_COLLECTION}/history"

# Runway reported when no spend has been observed
RUNWAY_UNBOUNDED_DAYS = 999


def calculate_runway(remaining: float, avg_daily_cost: float) -> int:
    """
    Days the remaining budget lasts at the average daily cost.

    >>> calculate_runway(285.50, 0.47)
    607
    """
    if avg_daily_cost <= 0:
        return RUNWAY_UNBOUNDED_DAYS
    if remaining <= 0:
        return 0
    return math.floor(remaining / avg_daily_cost)


@dataclass
class BudgetState:
    """Persisted budget document."""

    initial_credit_usd: float
    total_spent_usd: float
    remaining_usd: float    # may go negative on overrun
    start_date: str
    credit_expiration_date: str
    last_updated: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "initial_credit_usd": self.initial_credit_usd,
            "total_spent_usd": self.total_spent_usd,
            "remaining_usd": self.remaining_usd,
            "start_date": self.start_date,
            "credit_expiration_date": self.credit_expiration_date,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BudgetState":
        return cls(
            initial_credit_usd=float(data["initial_credit_usd"]),
            total_spent_usd=float(data["total_spent_usd"]),
            remaining_usd=float(data["remaining_usd"]),
            start_date=data["start_date"],
            credit_expiration_date=data["credit_expiration_date"],
            last_updated=data["last_updated"],
        )


@dataclass(frozen=True)
class BudgetStatus:
    """Reporting view of the budget."""

    initial_credit_usd: float
    total_spent_usd: float
    remaining_usd: float
    days_of_runway: int
    projected_monthly_usd: float
    avg_daily_cost_usd: float
    within_budget: bool
    within_credit_period: bool
    start_date: str
    credit_expiration_date: str
    last_updated: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "initial_credit_usd": self.initial_credit_usd,
            "total_spent_usd": self.total_spent_usd,
            "remaining_usd": self.remaining_usd,
            "days_of_runway": self.days_of_runway,
            "projected_monthly_usd": self.projected_monthly_usd,
            "avg_daily_cost_usd": self.avg_daily_cost_usd,
            "within_budget": self.within_budget,
            "within_credit_period": self.within_credit_period,
            "start_date": self.start_date,
            "credit_expiration_date": self.credit_expiration_date,
            "last_updated": self.last_updated,
        }


@dataclass
class MonthlyBudgetHistory:
    """Spend recorded during one month."""

    month: str
    monthly_spent: float = 0.0
    video_count: int = 0
    avg_cost_per_video: float = 0.0
    days: dict[str, float] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "month": self.month,
            "monthly_spent": self.monthly_spent,
            "video_count": self.video_count,
            "avg_cost_per_video": self.avg_cost_per_video,
            "days": dict(self.days or {}),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MonthlyBudgetHistory":
        return cls(
            month=data["month"],
            monthly_spent=float(data.get("monthly_spent", 0.0)),
            video_count=int(data.get("video_count", 0)),
            avg_cost_per_video=float(data.get("avg_cost_per_video", 0.0)),
            days={k: float(v) for k, v in (data.get("days") or {}).items()},
        )


class BudgetTracker:
    """
    Budget, runway and threshold tracking.

    Usage:
        tracker = BudgetTracker(persistence)
        await tracker.record_spend(0.47, "2026-01-22")
        status = await tracker.status()
    """

    def __init__(
        self,
        persistence: Persistence,
        settings: BudgetSettings | None = None,
        cost_settings: CostSettings | None = None,
        transport: AlertTransport | None = None,
        clock: Clock = utc_now,
    ):
        if settings is None or cost_settings is None:
            from pipeline_guard.config.settings import get_settings
            app_settings = get_settings()
            settings = settings or app_settings.budget
            cost_settings = cost_settings or app_settings.cost

        self._persistence = persistence
        self._settings = settings
        self._cost_settings = cost_settings
        self._clock = clock
        self._alerts = CostAlertMonitor(
            persistence,
            transport=transport,
            settings=cost_settings,
            clock=clock,
        )

    @property
    def alerts(self) -> CostAlertMonitor:
        return self._alerts

    @property
    def persistence(self) -> Persistence:
        return self._persistence

    @property
    def settings(self) -> BudgetSettings:
        return self._settings

    @property
    def cost_settings(self) -> CostSettings:
        return self._cost_settings

    def today(self) -> date:
        return self._clock().date()

    async def _load(self) -> BudgetState | None:
        doc = await self._persistence.get_document(BUDGET_COLLECTION, BUDGET_DOC_ID)
        return BudgetState.from_dict(doc) if doc else None

    async def _save(self, state: BudgetState) -> None:
        await self._persistence.set_document(BUDGET_COLLECTION, BUDGET_DOC_ID, state.to_dict())

    async def initialize(
        self,
        initial_credit: float | None = None,
        start_date: str | None = None,
    ) -> BudgetState:
        """Create the budget document. No-op when one already exists."""
        existing = await self._load()
        if existing is not None:
            logger.debug("Budget already initialized", start_date=existing.start_date)
            return existing

        credit = self._settings.default_credit if initial_credit is None else initial_credit
        if credit < 0:
            raise PipelineError.critical(
                ErrorCode.BUDGET_INVALID_AMOUNT,
                f"Initial credit must be >= 0, got {credit}",
            )

        start = date.fromisoformat(start_date) if start_date else self.today()
        expiration = start + timedelta(days=self._settings.credit_expiration_days)
        state = BudgetState(
            initial_credit_usd=credit,
            total_spent_usd=0.0,
            remaining_usd=credit,
            start_date=start.isoformat(),
            credit_expiration_date=expiration.isoformat(),
            last_updated=self._clock().isoformat(),
        )
        await self._save(state)

        logger.info(
            "Budget initialized",
            initial_credit=credit,
            start_date=state.start_date,
            credit_expiration=state.credit_expiration_date,
        )
        return state

    async def get_state(self) -> BudgetState:
        """Load the budget document, initializing it when missing."""
        return await self._load() or await self.initialize()

    async def status(self) -> BudgetStatus:
        """Current budget status with runway and monthly projection."""
        state = await self.get_state()
        trend = await get_cost_trend(
            self._persistence,
            days=self._settings.trend_window_days,
            today=self.today(),
        )
        avg_daily = trend.summary.avg_daily
        projected_monthly = round_cost(avg_daily * 30)

        status = BudgetStatus(
            initial_credit_usd=state.initial_credit_usd,
            total_spent_usd=state.total_spent_usd,
            remaining_usd=max(0.0, state.remaining_usd),
            days_of_runway=calculate_runway(state.remaining_usd, avg_daily),
            projected_monthly_usd=projected_monthly,
            avg_daily_cost_usd=avg_daily,
            within_budget=projected_monthly <= self._settings.monthly_target,
            within_credit_period=self.today() < date.fromisoformat(state.credit_expiration_date),
            start_date=state.start_date,
            credit_expiration_date=state.credit_expiration_date,
            last_updated=state.last_updated,
        )

        logger.debug(
            "Budget status calculated",
            remaining=status.remaining_usd,
            days_of_runway=status.days_of_runway,
            projected_monthly=status.projected_monthly_usd,
            within_budget=status.within_budget,
        )
        return status

    async def record_spend(self, amount_usd: float, spend_date: str | None = None) -> BudgetState:
        """Add spend to the budget and the monthly history."""
        if not math.isfinite(amount_usd) or amount_usd < 0:
            raise PipelineError.critical(
                ErrorCode.BUDGET_INVALID_AMOUNT,
                f"Spend amount must be a non-negative number, got {amount_usd!r}",
                context={"amount_usd": amount_usd},
            )

        day = spend_date or self.today().isoformat()
        state = await self.get_state()
        state.total_spent_usd = round_cost(state.total_spent_usd + amount_usd)
        state.remaining_usd = round_cost(state.initial_credit_usd - state.total_spent_usd)
        state.last_updated = self._clock().isoformat()
        await self._save(state)

        if state.remaining_usd < 0:
            logger.error(
                "Budget overrun",
                total_spent=state.total_spent_usd,
                remaining=state.remaining_usd,
            )
        else:
            logger.info(
                "Budget spend recorded",
                amount=amount_usd,
                date=day,
                total_spent=state.total_spent_usd,
                remaining=state.remaining_usd,
            )

        await self._update_monthly_history(day, amount_usd)
        return state

    async def _update_monthly_history(self, day: str, amount_usd: float) -> None:
        month = day[:7]
        try:
            doc = await self._persistence.get_document(BUDGET_HISTORY_COLLECTION, month)
            history = MonthlyBudgetHistory.from_dict(doc) if doc else MonthlyBudgetHistory(month=month, days={})
            history.monthly_spent = round_cost(history.monthly_spent + amount_usd)
            history.video_count += 1
            history.avg_cost_per_video = round_cost(history.monthly_spent / history.video_count)
            days = history.days or {}
            days[day] = round_cost(days.get(day, 0.0) + amount_usd)
            history.days = days
            await self._persistence.set_document(BUDGET_HISTORY_COLLECTION, month, history.to_dict())
        except Exception as e:
            logger.warning("Failed to update monthly history", month=month, error=str(e))

    async def get_monthly_history(self, month: str | None = None) -> MonthlyBudgetHistory | None:
        """Spend history for a month (YYYY-MM), defaulting to the current month."""
        target = month or self._clock().strftime("%Y-%m")
        doc = await self._persistence.get_document(BUDGET_HISTORY_COLLECTION, target)
        return MonthlyBudgetHistory.from_dict(doc) if doc else None

    async def reset(self, new_credit: float | None = None) -> BudgetState:
        """Discard all budget tracking and start over."""
        await self._persistence.delete_document(BUDGET_COLLECTION, BUDGET_DOC_ID)
        state = await self.initialize(new_credit)
        logger.warning(
            "Budget reset - all previous tracking data cleared",
            new_credit=state.initial_credit_usd,
        )
        return state

    async def check_thresholds(
        self,
        cost_usd: float,
        pipeline_id: str,
        breakdown: dict[str, float] | None = None,
    ) -> ThresholdCheckResult:
        """Check a video's cost against the WARNING/CRITICAL thresholds."""
        remaining = None
        try:
            state = await self._load()
            if state is not None:
                remaining = max(0.0, state.remaining_usd)
        except Exception as e:
            logger.warning("Failed to load budget for alert payload", error=str(e))

        return await self._alerts.check_thresholds(
            cost_usd,
            pipeline_id,
            breakdown=breakdown,
            budget_remaining=remaining,
        )

    def per_video_target(self, within_credit_period: bool) -> float:
        """Per-video cost target for the current credit phase."""
        if within_credit_period:
            return self._settings.credit_period_per_video
        return self._settings.post_credit_per_video
