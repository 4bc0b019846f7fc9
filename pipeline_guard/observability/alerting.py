"""
Alert Transports and Webhook Integration.

Delivers cost and budget alerts raised by the pipeline:
- WARNING alerts (per-video cost approaching the limit)
- CRITICAL alerts (per-video cost at or above the limit)

Supports webhook notifications to Slack, Discord, and custom endpoints,
with a structured-log transport for local runs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
import structlog

from pipeline_guard.config.settings import ObservabilitySettings

logger = structlog.get_logger(__name__)


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    WARNING = "warning"
    CRITICAL = "critical"


class AlertChannel(str, Enum):
    """Alert notification channels."""
    SLACK = "slack"
    DISCORD = "discord"
    WEBHOOK = "webhook"
    LOG = "log"


SEVERITY_COLORS = {
    AlertSeverity.WARNING: 0xFFCC00,
    AlertSeverity.CRITICAL: 0xFF0000,
}


@dataclass
class WebhookConfig:
    """Configuration for webhook notifications."""

    channel: AlertChannel
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: int = 10

    # Channel-specific settings
    slack_channel: str | None = None
    discord_username: str | None = None


class AlertTransport(ABC):
    """
    Notification transport consumed by the cost alert monitor.

    Sending is fire-and-observe: implementations may raise on delivery
    failure and callers log the failure without failing the pipeline.
    """

    @abstractmethod
    async def send_warning_alert(self, payload: dict[str, Any]) -> None:
        """Deliver a WARNING alert."""
        pass

    @abstractmethod
    async def send_critical_alert(self, payload: dict[str, Any]) -> None:
        """Deliver a CRITICAL alert."""
        pass


class LoggingAlertTransport(AlertTransport):
    """Writes alerts to the structured logger."""

    async def send_warning_alert(self, payload: dict[str, Any]) -> None:
        logger.warning("ALERT [WARNING]: cost threshold", **payload)

    async def send_critical_alert(self, payload: dict[str, Any]) -> None:
        logger.critical("ALERT [CRITICAL]: cost threshold", **payload)


class WebhookAlertTransport(AlertTransport):
    """
    Sends alerts to webhooks.

    WARNING alerts go to the warning webhook and CRITICAL alerts to the
    critical webhook. A severity with no webhook configured is logged.
    """

    def __init__(
        self,
        warning_webhook: WebhookConfig | None = None,
        critical_webhook: WebhookConfig | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._webhooks: dict[AlertSeverity, WebhookConfig] = {}
        if warning_webhook:
            self.configure_webhook(AlertSeverity.WARNING, warning_webhook)
        if critical_webhook:
            self.configure_webhook(AlertSeverity.CRITICAL, critical_webhook)
        self._http_transport = http_transport
        self._fallback = LoggingAlertTransport()

    def configure_webhook(self, severity: AlertSeverity, config: WebhookConfig) -> None:
        """Configure the webhook used for one severity."""
        self._webhooks[severity] = config
        logger.info(
            "Webhook configured",
            severity=severity.value,
            channel=config.channel.value,
            url=config.url[:50] + "..." if len(config.url) > 50 else config.url,
        )

    async def send_warning_alert(self, payload: dict[str, Any]) -> None:
        await self._send(AlertSeverity.WARNING, payload)

    async def send_critical_alert(self, payload: dict[str, Any]) -> None:
        await self._send(AlertSeverity.CRITICAL, payload)

    async def _send(self, severity: AlertSeverity, payload: dict[str, Any]) -> None:
        config = self._webhooks.get(severity)
        if config is None:
            logger.warning("No webhook configured for severity", severity=severity.value)
            if severity == AlertSeverity.CRITICAL:
                await self._fallback.send_critical_alert(payload)
            else:
                await self._fallback.send_warning_alert(payload)
            return

        body = format_payload(severity, payload, config)

        async with httpx.AsyncClient(
            timeout=config.timeout_seconds,
            transport=self._http_transport,
        ) as client:
            response = await client.post(config.url, json=body, headers=config.headers)
            response.raise_for_status()

        logger.debug(
            "Webhook sent",
            channel=config.channel.value,
            severity=severity.value,
            status_code=response.status_code,
        )


def _title(severity: AlertSeverity, payload: dict[str, Any]) -> str:
    pipeline_id = payload.get("pipeline_id", "unknown")
    return f"[{severity.value.upper()}] Cost alert for pipeline {pipeline_id}"


def _fields(payload: dict[str, Any]) -> list[tuple[str, str]]:
    fields = []
    for key, value in payload.items():
        if key in ("severity", "pipeline_id", "timestamp"):
            continue
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items())
        fields.append((key, str(value)))
    return fields


def format_payload(
    severity: AlertSeverity,
    payload: dict[str, Any],
    config: WebhookConfig,
) -> dict[str, Any]:
    """Format alert payload for a specific channel."""
    if config.channel == AlertChannel.SLACK:
        return _format_slack(severity, payload, config)
    elif config.channel == AlertChannel.DISCORD:
        return _format_discord(severity, payload, config)
    return {"severity": severity.value, **payload}


def _format_slack(
    severity: AlertSeverity,
    payload: dict[str, Any],
    config: WebhookConfig,
) -> dict[str, Any]:
    """Format alert for Slack webhook."""
    timestamp = payload.get("timestamp") or datetime.now(timezone.utc).isoformat()
    return {
        "channel": config.slack_channel,
        "attachments": [{
            "color": f"#{SEVERITY_COLORS[severity]:06x}",
            "title": _title(severity, payload),
            "fields": [
                {"title": name, "value": value, "short": True}
                for name, value in _fields(payload)
            ],
            "footer": "Pipeline Guard",
            "ts": int(datetime.fromisoformat(timestamp).timestamp()),
        }],
    }


def _format_discord(
    severity: AlertSeverity,
    payload: dict[str, Any],
    config: WebhookConfig,
) -> dict[str, Any]:
    """Format alert for Discord webhook."""
    return {
        "username": config.discord_username or "Pipeline Alerts",
        "embeds": [{
            "title": _title(severity, payload),
            "color": SEVERITY_COLORS[severity],
            "fields": [
                {"name": name, "value": value, "inline": True}
                for name, value in _fields(payload)
            ],
            "timestamp": payload.get("timestamp"),
        }],
    }


def build_alert_transport(
    settings: ObservabilitySettings | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> AlertTransport:
    """Create the alert transport described by the observability settings."""
    if settings is None:
        from pipeline_guard.config.settings import get_settings
        settings = get_settings().observability

    if not settings.alerting_enabled:
        return LoggingAlertTransport()

    warning = None
    critical = None
    if settings.warning_webhook_url:
        warning = WebhookConfig(
            channel=AlertChannel(settings.warning_webhook_channel),
            url=settings.warning_webhook_url,
            timeout_seconds=settings.webhook_timeout_seconds,
        )
    if settings.critical_webhook_url:
        critical = WebhookConfig(
            channel=AlertChannel(settings.critical_webhook_channel),
            url=settings.critical_webhook_url,
            timeout_seconds=settings.webhook_timeout_seconds,
        )
    return WebhookAlertTransport(
        warning_webhook=warning,
        critical_webhook=critical,
        http_transport=http_transport,
    )
