"""
Retry Handler with Exponential Backoff.

Provides retry mechanisms for provider calls:
- Configurable retry attempts and delays
- Exponential backoff with 50-100% jitter
- Recoverable vs fatal error classification
- Per-attempt deadlines
- Aggregated failure carrying the full attempt history
"""

import asyncio
import inspect
import math
import random
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Awaitable, Callable, Generic, TypeVar

import structlog

from pipeline_guard.core.errors import ErrorCode, ErrorSeverity, PipelineError, is_retryable

logger = structlog.get_logger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, int, BaseException], None]


@dataclass
class RetryOptions:
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    timeout_ms: int | None = None   # per-attempt deadline
    stage: str | None = None

    # Plain exceptions treated as recoverable
    retryable_exceptions: tuple[type[BaseException], ...] = (
        TimeoutError,
        ConnectionError,
    )

    @classmethod
    def from_settings(cls, stage: str | None = None) -> "RetryOptions":
        """Build options from the application settings."""
        from pipeline_guard.config.settings import get_settings

        settings = get_settings().retry
        return cls(
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
            timeout_ms=settings.timeout_ms,
            stage=stage,
        )

    def validate(self) -> None:
        """Reject negative or inconsistent options as configuration errors."""
        problems = []
        if self.max_retries < 0:
            problems.append(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms < 0:
            problems.append(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < 0:
            problems.append(f"max_delay_ms must be >= 0, got {self.max_delay_ms}")
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            problems.append(f"timeout_ms must be > 0, got {self.timeout_ms}")

        if problems:
            raise PipelineError.critical(
                ErrorCode.RETRY_INVALID_OPTIONS,
                "Invalid retry options: " + "; ".join(problems),
                stage=self.stage,
                context={"max_retries": self.max_retries,
                         "base_delay_ms": self.base_delay_ms,
                         "max_delay_ms": self.max_delay_ms},
            )

    def get_delay(self, attempt: int) -> int:
        """Calculate delay in milliseconds for a 0-indexed attempt number."""
        delay = min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)
        jitter = 0.5 + random.random() * 0.5
        return math.floor(delay * jitter)

    def is_retryable(self, error: BaseException) -> bool:
        """Check if an error is recoverable."""
        if isinstance(error, PipelineError):
            return is_retryable(error)
        return isinstance(error, self.retryable_exceptions)


@dataclass(frozen=True)
class RetryAttemptRecord:
    """Diagnostic record of one failed attempt."""

    attempt_number: int
    error_code: str
    delay_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt": self.attempt_number,
            "error_code": self.error_code,
            "delay_ms": self.delay_ms,
        }


@dataclass
class RetryResult(Generic[T]):
    """Successful outcome of a retried call."""

    result: T
    attempts: int
    total_delay_ms: int
    history: list[RetryAttemptRecord] = field(default_factory=list)


def _error_code(error: BaseException) -> str:
    if isinstance(error, PipelineError):
        return error.code
    return type(error).__name__


async def call_maybe_async(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call a sync or async function and await the result if needed."""
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


class RetryPolicy:
    """
    Runs an operation, retrying recoverable failures with backoff.

    Usage:
        policy = RetryPolicy(RetryOptions(max_retries=3))
        outcome = await policy.run(synthesize, text)
        audio = outcome.result
    """

    def __init__(self, options: RetryOptions | None = None):
        self.options = options or RetryOptions()
        self.options.validate()
        self._total_retries = 0
        self._total_failures = 0

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_retries": self._total_retries,
            "total_failures": self._total_failures,
        }

    async def _attempt(self, operation: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if self.options.timeout_ms is None:
            return await call_maybe_async(operation, *args, **kwargs)

        try:
            return await asyncio.wait_for(
                call_maybe_async(operation, *args, **kwargs),
                timeout=self.options.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise PipelineError.retryable_error(
                ErrorCode.PIPELINE_TIMEOUT,
                f"Attempt exceeded deadline of {self.options.timeout_ms}ms",
                stage=self.options.stage,
                context={"timeout_ms": self.options.timeout_ms},
            ) from e

    async def run(
        self,
        operation: Callable[..., T | Awaitable[T]],
        *args: Any,
        on_retry: OnRetry | None = None,
        **kwargs: Any,
    ) -> RetryResult[T]:
        """
        Execute an operation with retry logic.

        Args:
            operation: Function to execute (can be async or sync)
            *args: Positional arguments for the operation
            on_retry: Optional callback called before each backoff wait
            **kwargs: Keyword arguments for the operation

        Returns:
            RetryResult with the result, attempt count and total delay

        Raises:
            PipelineError: critical, carrying the attempt history
        """
        options = self.options
        history: list[RetryAttemptRecord] = []
        total_delay_ms = 0
        attempt = 0

        while attempt <= options.max_retries:
            try:
                result = await self._attempt(operation, *args, **kwargs)
                if attempt > 0:
                    logger.info(
                        "Operation succeeded after retry",
                        stage=options.stage,
                        attempts=attempt + 1,
                        total_delay_ms=total_delay_ms,
                    )
                return RetryResult(
                    result=result,
                    attempts=attempt + 1,
                    total_delay_ms=total_delay_ms,
                    history=history,
                )

            except Exception as e:
                code = _error_code(e)

                if not options.is_retryable(e):
                    logger.warning(
                        "Non-retryable error, failing immediately",
                        stage=options.stage,
                        error_type=type(e).__name__,
                        error_code=code,
                        error=str(e),
                    )
                    self._total_failures += 1
                    history.append(RetryAttemptRecord(attempt + 1, code, 0))
                    raise self._aggregate(e, attempt, history, exhausted=False) from e

                if attempt >= options.max_retries:
                    logger.error(
                        "All retries exhausted",
                        stage=options.stage,
                        attempt=attempt + 1,
                        max_retries=options.max_retries,
                        error_code=code,
                        error=str(e),
                    )
                    self._total_failures += 1
                    history.append(RetryAttemptRecord(attempt + 1, code, 0))
                    raise self._aggregate(e, attempt, history, exhausted=True) from e

                delay_ms = options.get_delay(attempt)
                history.append(RetryAttemptRecord(attempt + 1, code, delay_ms))
                total_delay_ms += delay_ms
                self._total_retries += 1

                logger.warning(
                    "Retry scheduled",
                    stage=options.stage,
                    attempt=attempt + 1,
                    max_retries=options.max_retries,
                    delay_ms=delay_ms,
                    error_code=code,
                    error=str(e)[:100],
                )

                if on_retry:
                    try:
                        on_retry(attempt + 1, delay_ms, e)
                    except Exception as callback_error:
                        logger.warning("on_retry callback failed", error=str(callback_error))

                await asyncio.sleep(delay_ms / 1000)
                attempt += 1

        raise PipelineError.critical(
            ErrorCode.RETRY_EXHAUSTED,
            "Retry loop completed without result or error",
            stage=options.stage,
        )

    def _aggregate(
        self,
        error: BaseException,
        attempt: int,
        history: list[RetryAttemptRecord],
        exhausted: bool,
    ) -> PipelineError:
        """Build the single critical error raised when the policy gives up."""
        if isinstance(error, PipelineError):
            code = error.code
            original_severity = error.severity.value
            stage = error.stage or self.options.stage
            base_context = dict(error.context)
        else:
            code = ErrorCode.RETRY_EXHAUSTED.value
            original_severity = None
            stage = self.options.stage
            base_context = {"original_name": type(error).__name__}

        prefix = "Retries exhausted" if exhausted else "Non-retryable failure"
        return PipelineError(
            code,
            f"{prefix} after {attempt + 1} attempt(s): {error}",
            ErrorSeverity.CRITICAL,
            stage=stage,
            context={
                **base_context,
                "original_severity": original_severity,
                "retry_attempts": attempt + 1,
                "exhausted_retries": exhausted,
                "retry_history": [record.to_dict() for record in history],
            },
        )

    def wrap(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """
        Decorator to wrap a function with retry logic.

        The wrapped function returns the bare result.
        """
        @wraps(func)
        async def wrapper(*args, **kwargs):
            outcome = await self.run(func, *args, **kwargs)
            return outcome.result

        return wrapper


def with_retry(
    max_retries: int = 3,
    base_delay_ms: int = 1000,
    max_delay_ms: int = 30000,
    timeout_ms: int | None = None,
    stage: str | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator factory for retry with exponential backoff.

    Usage:
        @with_retry(max_retries=3, base_delay_ms=500, stage="script-gen")
        async def generate_script():
            ...
    """
    policy = RetryPolicy(RetryOptions(
        max_retries=max_retries,
        base_delay_ms=base_delay_ms,
        max_delay_ms=max_delay_ms,
        timeout_ms=timeout_ms,
        stage=stage,
    ))

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        return policy.wrap(func)

    return decorator


# Pre-configured options for common provider families
LLM_RETRY_OPTIONS = RetryOptions(
    max_retries=3,
    base_delay_ms=2000,
    max_delay_ms=30000,
)

TTS_RETRY_OPTIONS = RetryOptions(
    max_retries=3,
    base_delay_ms=1000,
    max_delay_ms=15000,
)

RENDER_RETRY_OPTIONS = RetryOptions(
    max_retries=2,
    base_delay_ms=5000,
    max_delay_ms=60000,
    timeout_ms=45 * 60 * 1000,
)
