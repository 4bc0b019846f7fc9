"""
Structured Logging Configuration.

Configures structlog for:
- JSON output in production
- Colored console output in development
- Pipeline run ID injection
- Stage-scoped log context
"""

import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Literal

import structlog
from structlog.types import EventDict, WrappedLogger

# Identifier of the pipeline run currently executing (YYYY-MM-DD)
pipeline_id_var: ContextVar[str | None] = ContextVar("pipeline_id", default=None)

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

SENSITIVE_KEYS = frozenset({
    "password", "api_key", "secret", "token", "authorization",
    "apikey", "api-key", "bearer", "credential", "private_key", "webhook_url",
})


class LogContext:
    """
    Context manager for adding temporary context to logs.

    Usage:
        with LogContext(pipeline_id="2026-01-22", stage="tts"):
            logger.info("Stage started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._token = None
        self._pipeline_token = None

    def __enter__(self):
        current = _log_context.get().copy()
        current.update(self._context)
        self._token = _log_context.set(current)
        if "pipeline_id" in self._context:
            self._pipeline_token = pipeline_id_var.set(self._context["pipeline_id"])
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._pipeline_token:
            pipeline_id_var.reset(self._pipeline_token)
        if self._token:
            _log_context.reset(self._token)
        return False


def get_log_context() -> dict[str, Any]:
    """Return a copy of the active log context."""
    return _log_context.get().copy()


def add_pipeline_id(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add the current pipeline run ID to log events."""
    pipeline_id = pipeline_id_var.get()
    if pipeline_id and "pipeline_id" not in event_dict:
        event_dict["pipeline_id"] = pipeline_id
    return event_dict


def add_log_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add context variables to log events without overriding explicit keys."""
    context = _log_context.get()
    for key, value in context.items():
        event_dict.setdefault(key, value)
    return event_dict


def add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add ISO timestamp to log events."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def censor_sensitive_data(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Censor sensitive data from logs."""

    def censor_value(key: str, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: censor_value(k, v) for k, v in value.items()}
        elif isinstance(value, str) and any(s in key.lower() for s in SENSITIVE_KEYS):
            return "***REDACTED***"
        return value

    for key in list(event_dict.keys()):
        event_dict[key] = censor_value(key, event_dict[key])

    return event_dict


def configure_logging(
    level: str = "INFO",
    format: Literal["json", "console"] = "json",
    service_name: str = "pipeline-guard",
) -> None:
    """
    Configure structlog for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format: Output format ("json" for production, "console" for development)
        service_name: Service name added to every event
    """

    def add_service_info(
        logger: WrappedLogger,
        method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        event_dict["service"] = service_name
        return event_dict

    shared_processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_timestamp,
        add_service_info,
        add_pipeline_id,
        add_log_context,
        censor_sensitive_data,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def configure_logging_from_settings() -> None:
    """Configure logging from the application settings."""
    from pipeline_guard.config.settings import get_settings

    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        format=settings.observability.log_format,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
