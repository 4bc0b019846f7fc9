"""
Core Infrastructure Module.

Provides foundational types shared by every layer:
- Tagged pipeline error with explicit recoverability
- Provider tier and stage result records
"""

from pipeline_guard.core.errors import (
    ErrorCode,
    ErrorSeverity,
    PipelineError,
    can_continue,
    is_retryable,
    should_fallback,
)
from pipeline_guard.core.types import (
    ProviderInfo,
    ProviderTier,
    QualityReport,
    QualityStatus,
    StageResult,
)

__all__ = [
    # Errors
    "ErrorCode",
    "ErrorSeverity",
    "PipelineError",
    "can_continue",
    "is_retryable",
    "should_fallback",
    # Types
    "ProviderInfo",
    "ProviderTier",
    "QualityReport",
    "QualityStatus",
    "StageResult",
]
