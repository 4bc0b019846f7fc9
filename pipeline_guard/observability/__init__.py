"""
Observability Module.

Provides observability for the pipeline reliability layer:
- Structured logging with JSON output and pipeline run IDs
- Alert transports with webhook integrations
"""

from pipeline_guard.observability.logging import (
    LogContext,
    configure_logging,
    configure_logging_from_settings,
    get_logger,
    pipeline_id_var,
)
from pipeline_guard.observability.alerting import (
    AlertChannel,
    AlertSeverity,
    AlertTransport,
    LoggingAlertTransport,
    WebhookAlertTransport,
    WebhookConfig,
    build_alert_transport,
)

__all__ = [
    # Logging
    "LogContext",
    "configure_logging",
    "configure_logging_from_settings",
    "get_logger",
    "pipeline_id_var",
    # Alerting
    "AlertChannel",
    "AlertSeverity",
    "AlertTransport",
    "LoggingAlertTransport",
    "WebhookAlertTransport",
    "WebhookConfig",
    "build_alert_transport",
]
