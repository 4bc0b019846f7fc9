"""
Cost Threshold Alerting.

Checks each video's cost against two fixed thresholds:
- WARNING at or above the warning threshold
- CRITICAL at or above the critical threshold

Each severity has its own cooldown window. Breaches inside the window are
counted but not re-notified. Counts reset at the start of every month.
Delivery failures are logged and never propagate to the pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import structlog

from pipeline_guard.config.settings import CostSettings
from pipeline_guard.observability.alerting import (
    AlertSeverity,
    AlertTransport,
    LoggingAlertTransport,
)
from pipeline_guard.storage.persistence import Persistence

logger = structlog.get_logger(__name__)

BUDGET_COLLECTION = "budget"
ALERTS_DOC_ID = "alerts"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AlertCounts:
    """Alert state for the current month."""

    month: str
    warning_count: int = 0
    critical_count: int = 0
    last_warning_at: str | None = None
    last_critical_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "month": self.month,
            "warning_count": self.warning_count,
            "critical_count": self.critical_count,
            "last_warning_at": self.last_warning_at,
            "last_critical_at": self.last_critical_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertCounts":
        return cls(
            month=data["month"],
            warning_count=int(data.get("warning_count", 0)),
            critical_count=int(data.get("critical_count", 0)),
            last_warning_at=data.get("last_warning_at"),
            last_critical_at=data.get("last_critical_at"),
        )

    def last_sent(self, severity: AlertSeverity) -> datetime | None:
        value = self.last_critical_at if severity == AlertSeverity.CRITICAL else self.last_warning_at
        return datetime.fromisoformat(value) if value else None

    def record(self, severity: AlertSeverity, sent_at: datetime | None) -> None:
        if severity == AlertSeverity.CRITICAL:
            self.critical_count += 1
            if sent_at:
                self.last_critical_at = sent_at.isoformat()
        else:
            self.warning_count += 1
            if sent_at:
                self.last_warning_at = sent_at.isoformat()


@dataclass(frozen=True)
class CostAlertPayload:
    """Data delivered with a cost alert."""

    severity: AlertSeverity
    pipeline_id: str
    video_cost: float
    threshold: float
    breakdown: dict[str, float] = field(default_factory=dict)
    budget_remaining: float | None = None
    timestamp: str = field(default_factory=lambda: utc_now().isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "pipeline_id": self.pipeline_id,
            "video_cost": self.video_cost,
            "breakdown": dict(self.breakdown),
            "threshold": self.threshold,
            "budget_remaining": self.budget_remaining,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ThresholdCheckResult:
    """Outcome of one threshold check."""

    triggered: bool
    severity: AlertSeverity | None = None
    sent: bool = False
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "triggered": self.triggered,
            "severity": self.severity.value if self.severity else None,
            "sent": self.sent,
            "reason": self.reason,
        }


class CostAlertMonitor:
    """
    Threshold checks with per-severity cooldown.

    Usage:
        monitor = CostAlertMonitor(persistence, transport)
        result = await monitor.check_thresholds(0.82, "2026-01-22")
    """

    def __init__(
        self,
        persistence: Persistence,
        transport: AlertTransport | None = None,
        settings: CostSettings | None = None,
        clock: Clock = utc_now,
    ):
        if settings is None:
            from pipeline_guard.config.settings import get_settings
            settings = get_settings().cost

        self._persistence = persistence
        self._transport = transport or LoggingAlertTransport()
        self._settings = settings
        self._clock = clock

    def classify(self, video_cost: float) -> tuple[AlertSeverity, float] | None:
        """Return the breached severity and its threshold, if any."""
        if video_cost >= self._settings.critical_threshold:
            return AlertSeverity.CRITICAL, self._settings.critical_threshold
        if video_cost >= self._settings.warning_threshold:
            return AlertSeverity.WARNING, self._settings.warning_threshold
        return None

    async def get_alert_counts(self) -> AlertCounts:
        """Load this month's alert state, starting fresh on a new month."""
        month = self._clock().strftime("%Y-%m")
        doc = await self._persistence.get_document(BUDGET_COLLECTION, ALERTS_DOC_ID)
        if not doc or doc.get("month") != month:
            return AlertCounts(month=month)
        return AlertCounts.from_dict(doc)

    async def reset_alert_counts(self) -> None:
        month = self._clock().strftime("%Y-%m")
        await self._persistence.set_document(
            BUDGET_COLLECTION, ALERTS_DOC_ID, AlertCounts(month=month).to_dict()
        )
        logger.info("Alert counts reset", month=month)

    def _in_cooldown(self, counts: AlertCounts, severity: AlertSeverity, now: datetime) -> bool:
        last = counts.last_sent(severity)
        if last is None:
            return False
        return now < last + timedelta(seconds=self._settings.alert_cooldown_seconds)

    async def check_thresholds(
        self,
        video_cost: float,
        pipeline_id: str,
        breakdown: dict[str, float] | None = None,
        budget_remaining: float | None = None,
    ) -> ThresholdCheckResult:
        """
        Check a video's cost and notify when a threshold is breached.

        Returns:
            ThresholdCheckResult describing whether an alert fired and was sent
        """
        breach = self.classify(video_cost)
        if breach is None:
            return ThresholdCheckResult(triggered=False)

        severity, threshold = breach
        now = self._clock()
        counts = await self.get_alert_counts()

        if self._in_cooldown(counts, severity, now):
            counts.record(severity, sent_at=None)
            await self._persistence.set_document(BUDGET_COLLECTION, ALERTS_DOC_ID, counts.to_dict())
            logger.info(
                "Cost alert suppressed by cooldown",
                pipeline_id=pipeline_id,
                severity=severity.value,
                video_cost=video_cost,
            )
            return ThresholdCheckResult(
                triggered=True,
                severity=severity,
                sent=False,
                reason="cooldown",
            )

        payload = CostAlertPayload(
            severity=severity,
            pipeline_id=pipeline_id,
            video_cost=video_cost,
            threshold=threshold,
            breakdown=breakdown or {},
            budget_remaining=budget_remaining,
            timestamp=now.isoformat(),
        )

        sent = True
        reason = None
        try:
            if severity == AlertSeverity.CRITICAL:
                await self._transport.send_critical_alert(payload.to_dict())
            else:
                await self._transport.send_warning_alert(payload.to_dict())
        except Exception as e:
            sent = False
            reason = f"send failed: {e}"
            logger.error(
                "Failed to send cost alert",
                pipeline_id=pipeline_id,
                severity=severity.value,
                error=str(e),
            )

        counts.record(severity, sent_at=now if sent else None)
        await self._persistence.set_document(BUDGET_COLLECTION, ALERTS_DOC_ID, counts.to_dict())

        logger.warning(
            "Cost threshold breached",
            pipeline_id=pipeline_id,
            severity=severity.value,
            video_cost=video_cost,
            threshold=threshold,
            sent=sent,
        )
        return ThresholdCheckResult(triggered=True, severity=severity, sent=sent, reason=reason)
