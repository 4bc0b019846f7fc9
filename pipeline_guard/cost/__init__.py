"""
Cost Tracking Module.

Provides cost accounting for pipeline runs:
- Per-stage cost ledger with service categorization
- Daily, per-video and monthly cost queries and trends
- Budget, runway and monthly history tracking
- Per-video cost threshold alerts with cooldown
- Dashboard and digest aggregation
"""

from pipeline_guard.cost.ledger import (
    DEFAULT_CATEGORY_RULES,
    CategoryRule,
    CostCategory,
    CostEntry,
    CostLedger,
    CostSummary,
    ServiceCostBreakdown,
    TokenUsage,
    categorize_service,
    round_cost,
    validate_pipeline_id,
)
from pipeline_guard.cost.queries import (
    CostTrend,
    CostTrendPoint,
    CostTrendSummary,
    DailyCost,
    MonthlyBudgetComparison,
    MonthlyCostSummary,
    StageCostDetail,
    TrendDirection,
    VideoCostBreakdown,
    get_cost_trend,
    get_costs_by_date,
    get_costs_by_video,
    get_costs_this_month,
    get_daily_costs_this_month,
)
from pipeline_guard.cost.alerts import (
    AlertCounts,
    CostAlertMonitor,
    CostAlertPayload,
    ThresholdCheckResult,
)
from pipeline_guard.cost.budget import (
    RUNWAY_UNBOUNDED_DAYS,
    BudgetState,
    BudgetStatus,
    BudgetTracker,
    MonthlyBudgetHistory,
    calculate_runway,
)
from pipeline_guard.cost.dashboard import (
    CostDashboard,
    DigestCostSection,
    get_cost_dashboard,
    get_cost_summary_for_digest,
)

__all__ = [
    # Ledger
    "DEFAULT_CATEGORY_RULES",
    "CategoryRule",
    "CostCategory",
    "CostEntry",
    "CostLedger",
    "CostSummary",
    "ServiceCostBreakdown",
    "TokenUsage",
    "categorize_service",
    "round_cost",
    "validate_pipeline_id",
    # Queries
    "CostTrend",
    "CostTrendPoint",
    "CostTrendSummary",
    "DailyCost",
    "MonthlyBudgetComparison",
    "MonthlyCostSummary",
    "StageCostDetail",
    "TrendDirection",
    "VideoCostBreakdown",
    "get_cost_trend",
    "get_costs_by_date",
    "get_costs_by_video",
    "get_costs_this_month",
    "get_daily_costs_this_month",
    # Alerts
    "AlertCounts",
    "CostAlertMonitor",
    "CostAlertPayload",
    "ThresholdCheckResult",
    # Budget
    "RUNWAY_UNBOUNDED_DAYS",
    "BudgetState",
    "BudgetStatus",
    "BudgetTracker",
    "MonthlyBudgetHistory",
    "calculate_runway",
    # Dashboard
    "CostDashboard",
    "DigestCostSection",
    "get_cost_dashboard",
    "get_cost_summary_for_digest",
]
