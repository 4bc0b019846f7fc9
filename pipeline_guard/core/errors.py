"""
Pipeline Error Taxonomy.

Provides one tagged error type for every failure in the pipeline:
- Severity levels that drive retry, fallback and continuation decisions
- Explicit recoverability set when the error is created
- Stable error codes in DOMAIN_TYPE form
- Normalization of arbitrary exceptions at stage boundaries
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

ERROR_CODE_PATTERN = re.compile(r"^[A-Z]+_[A-Z_]+$")


class ErrorSeverity(str, Enum):
    """How the pipeline should react to an error."""
    RETRYABLE = "RETRYABLE"      # transient, try the same provider again
    FALLBACK = "FALLBACK"        # move on to the next provider
    DEGRADED = "DEGRADED"        # continue with reduced quality
    RECOVERABLE = "RECOVERABLE"  # skip this stage, continue the pipeline
    CRITICAL = "CRITICAL"        # stop the pipeline


class ErrorCode(str, Enum):
    """Error codes grouped by domain."""

    # LLM
    LLM_TIMEOUT = "LLM_TIMEOUT"
    LLM_RATE_LIMIT = "LLM_RATE_LIMIT"
    LLM_INVALID_RESPONSE = "LLM_INVALID_RESPONSE"
    LLM_GENERATION_FAILED = "LLM_GENERATION_FAILED"

    # Speech synthesis
    TTS_TIMEOUT = "TTS_TIMEOUT"
    TTS_RATE_LIMIT = "TTS_RATE_LIMIT"
    TTS_SYNTHESIS_FAILED = "TTS_SYNTHESIS_FAILED"
    TTS_VOICE_NOT_FOUND = "TTS_VOICE_NOT_FOUND"

    # Image generation
    IMAGE_TIMEOUT = "IMAGE_TIMEOUT"
    IMAGE_GENERATION_FAILED = "IMAGE_GENERATION_FAILED"

    # Rendering
    RENDER_TIMEOUT = "RENDER_TIMEOUT"
    RENDER_FAILED = "RENDER_FAILED"

    # Storage
    STORAGE_READ_FAILED = "STORAGE_READ_FAILED"
    STORAGE_WRITE_FAILED = "STORAGE_WRITE_FAILED"
    STORAGE_NOT_FOUND = "STORAGE_NOT_FOUND"

    # Quality
    QUALITY_GATE_FAIL = "QUALITY_GATE_FAIL"
    QUALITY_DEGRADED = "QUALITY_DEGRADED"

    # Pipeline
    PIPELINE_TIMEOUT = "PIPELINE_TIMEOUT"
    PIPELINE_STAGE_FAILED = "PIPELINE_STAGE_FAILED"
    PIPELINE_ABORTED = "PIPELINE_ABORTED"

    # Retry / fallback
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
    RETRY_INVALID_OPTIONS = "RETRY_INVALID_OPTIONS"
    FALLBACK_EXHAUSTED = "FALLBACK_EXHAUSTED"
    FALLBACK_NO_PROVIDERS = "FALLBACK_NO_PROVIDERS"

    # Budget
    BUDGET_INVALID_AMOUNT = "BUDGET_INVALID_AMOUNT"
    BUDGET_NOT_INITIALIZED = "BUDGET_NOT_INITIALIZED"

    # Review queue
    REVIEW_ITEM_NOT_FOUND = "REVIEW_ITEM_NOT_FOUND"
    REVIEW_ITEM_ALREADY_RESOLVED = "REVIEW_ITEM_ALREADY_RESOLVED"

    # Generic
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"


class PipelineError(Exception):
    """
    Uniform error raised by every pipeline component.

    Attributes:
        code: Error code in DOMAIN_TYPE form
        severity: Reaction the pipeline should take
        recoverable: Whether the same call may be retried
        stage: Stage that raised the error, if known
        context: Diagnostic details (attempt history, provider failures, ...)
        timestamp: UTC time the error was created
    """

    def __init__(
        self,
        code: str | ErrorCode,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.CRITICAL,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
        recoverable: bool | None = None,
    ):
        super().__init__(message)
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.severity = severity
        self.recoverable = severity == ErrorSeverity.RETRYABLE if recoverable is None else recoverable
        self.stage = stage
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

        if not ERROR_CODE_PATTERN.match(self.code):
            logger.warning("Error code does not follow DOMAIN_TYPE format", code=self.code)

    def __repr__(self) -> str:
        return (
            f"PipelineError(code={self.code!r}, severity={self.severity.value}, "
            f"stage={self.stage!r}, message={self.message!r})"
        )

    @property
    def retryable(self) -> bool:
        return self.recoverable

    def with_stage(self, stage: str) -> "PipelineError":
        """Attach a stage name if one is not already set."""
        if self.stage is None:
            self.stage = stage
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "stage": self.stage,
            "context": self.context,
            "timestamp": self.timestamp,
        }

    # Factories

    @classmethod
    def retryable_error(
        cls,
        code: str | ErrorCode,
        message: str,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "PipelineError":
        return cls(code, message, ErrorSeverity.RETRYABLE, stage, context)

    @classmethod
    def fallback(
        cls,
        code: str | ErrorCode,
        message: str,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "PipelineError":
        return cls(code, message, ErrorSeverity.FALLBACK, stage, context)

    @classmethod
    def degraded(
        cls,
        code: str | ErrorCode,
        message: str,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "PipelineError":
        return cls(code, message, ErrorSeverity.DEGRADED, stage, context)

    @classmethod
    def critical(
        cls,
        code: str | ErrorCode,
        message: str,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> "PipelineError":
        return cls(code, message, ErrorSeverity.CRITICAL, stage, context)

    @classmethod
    def from_error(cls, error: BaseException, stage: str | None = None) -> "PipelineError":
        """
        Normalize any exception into a PipelineError.

        Existing PipelineErrors keep their code and severity and gain the
        stage name. Anything else becomes a critical UNKNOWN_ERROR carrying
        the original name, message and code.
        """
        if isinstance(error, PipelineError):
            if stage is not None:
                error.with_stage(stage)
            return error

        context: dict[str, Any] = {"original_name": type(error).__name__}
        original_code = getattr(error, "code", None)
        if original_code is not None:
            context["original_code"] = str(original_code)

        wrapped = cls(
            ErrorCode.UNKNOWN_ERROR,
            str(error) or type(error).__name__,
            ErrorSeverity.CRITICAL,
            stage,
            context,
        )
        wrapped.__cause__ = error
        return wrapped


def is_retryable(error: BaseException) -> bool:
    """Check whether an error may be retried against the same provider."""
    return isinstance(error, PipelineError) and error.recoverable


def should_fallback(error: BaseException) -> bool:
    """Check whether an error should move the call to the next provider."""
    return isinstance(error, PipelineError) and error.severity in (
        ErrorSeverity.RETRYABLE,
        ErrorSeverity.FALLBACK,
    )


def can_continue(error: BaseException) -> bool:
    """Check whether the pipeline can continue after this error."""
    return isinstance(error, PipelineError) and error.severity in (
        ErrorSeverity.DEGRADED,
        ErrorSeverity.RECOVERABLE,
    )
