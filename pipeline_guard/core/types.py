"""
Shared pipeline data model.

Records passed between the reliability, cost and quality layers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from pipeline_guard.cost.ledger import CostSummary

T = TypeVar("T")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProviderTier(str, Enum):
    """Position of the answering provider in its fallback chain."""
    PRIMARY = "primary"
    FALLBACK = "fallback"


class QualityStatus(str, Enum):
    """Outcome of a stage quality gate."""
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(frozen=True)
class ProviderInfo:
    """Which provider answered a call and how many attempts it took."""

    name: str
    tier: ProviderTier = ProviderTier.PRIMARY
    attempts: int = 1

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")
        if not isinstance(self.tier, ProviderTier):
            object.__setattr__(self, "tier", ProviderTier(self.tier))

    @classmethod
    def default(cls) -> "ProviderInfo":
        return cls(name="unknown", tier=ProviderTier.PRIMARY, attempts=1)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderInfo":
        return cls(
            name=data.get("name", "unknown"),
            tier=ProviderTier(data.get("tier", ProviderTier.PRIMARY.value)),
            attempts=int(data.get("attempts", 1)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "tier": self.tier.value,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class QualityReport:
    """Quality measurements recorded for one stage invocation."""

    stage: str
    timestamp: str = field(default_factory=utc_now_iso)
    measurements: dict[str, Any] = field(default_factory=dict)
    status: QualityStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "timestamp": self.timestamp,
            "measurements": dict(self.measurements),
            "status": self.status.value if self.status else None,
        }


@dataclass(frozen=True)
class StageResult(Generic[T]):
    """
    Result of one stage invocation.

    Produced once by StageExecutor and never mutated afterwards.
    """

    success: bool
    data: T
    cost_summary: "CostSummary"
    quality_report: QualityReport
    duration_ms: int
    provider_info: ProviderInfo = field(default_factory=ProviderInfo.default)
    warnings: tuple[str, ...] = ()
    artifacts: tuple[dict[str, Any], ...] = ()

    @property
    def stage(self) -> str:
        return self.quality_report.stage

    @property
    def used_fallback(self) -> bool:
        return self.provider_info.tier == ProviderTier.FALLBACK

    def measurement(self, key: str, default: Any = None) -> Any:
        """Look up a measurement, falling back to a mapping-shaped data payload."""
        if key in self.quality_report.measurements:
            return self.quality_report.measurements[key]
        if isinstance(self.data, dict):
            return self.data.get(key, default)
        return getattr(self.data, key, default)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "cost": self.cost_summary.to_dict(),
            "quality": self.quality_report.to_dict(),
            "duration_ms": self.duration_ms,
            "provider": self.provider_info.to_dict(),
            "warnings": list(self.warnings),
            "artifacts": list(self.artifacts),
        }
