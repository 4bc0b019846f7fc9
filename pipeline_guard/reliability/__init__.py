"""
Pipeline Reliability Module.

Provides provider-call reliability features:
- Retry with exponential backoff and jitter
- Ordered provider fallback chains with tier reporting
"""

from pipeline_guard.reliability.retry_handler import (
    LLM_RETRY_OPTIONS,
    RENDER_RETRY_OPTIONS,
    TTS_RETRY_OPTIONS,
    RetryAttemptRecord,
    RetryOptions,
    RetryPolicy,
    RetryResult,
    with_retry,
)
from pipeline_guard.reliability.fallback import (
    FallbackAttempt,
    FallbackChain,
    FallbackResult,
    Provider,
    with_fallback,
)

__all__ = [
    # Retry
    "LLM_RETRY_OPTIONS",
    "RENDER_RETRY_OPTIONS",
    "TTS_RETRY_OPTIONS",
    "RetryAttemptRecord",
    "RetryOptions",
    "RetryPolicy",
    "RetryResult",
    "with_retry",
    # Fallback
    "FallbackAttempt",
    "FallbackChain",
    "FallbackResult",
    "Provider",
    "with_fallback",
]
