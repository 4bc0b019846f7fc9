"""
Provider Fallback Chain.

Tries an ordered list of providers for one logical call:
- Strict declaration order, first success wins
- Optional retry of each provider before moving on
- Primary/fallback tier reporting for quality decisions
- Single aggregated failure when every provider fails
"""

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Protocol, Sequence, TypeVar, runtime_checkable

import structlog

from pipeline_guard.core.errors import ErrorCode, PipelineError
from pipeline_guard.core.types import ProviderInfo, ProviderTier
from pipeline_guard.reliability.retry_handler import (
    RetryOptions,
    RetryPolicy,
    call_maybe_async,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

OnFallback = Callable[[str, str, BaseException], None]


@runtime_checkable
class Provider(Protocol):
    """An external capability that can answer a pipeline call."""

    name: str

    async def invoke(self, *args: Any, **kwargs: Any) -> Any:
        ...


@dataclass(frozen=True)
class FallbackAttempt:
    """Outcome of trying one provider."""

    provider: str
    success: bool
    duration_ms: int
    attempts: int = 1
    error: str | None = None
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass
class FallbackResult(Generic[T]):
    """Successful outcome of a fallback chain."""

    value: T
    provider_name: str
    tier: ProviderTier
    attempt_log: list[FallbackAttempt] = field(default_factory=list)

    @property
    def total_attempts(self) -> int:
        return sum(a.attempts for a in self.attempt_log) or 1

    @property
    def provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.provider_name,
            tier=self.tier,
            attempts=self.total_attempts,
        )


def _describe(error: BaseException) -> tuple[str, str]:
    if isinstance(error, PipelineError):
        return error.message, error.code
    return str(error) or type(error).__name__, type(error).__name__


class FallbackChain:
    """
    Chain of providers with automatic failover.

    Attempts providers in declared order, failing over to the next
    provider when one fails.

    Usage:
        chain = FallbackChain([gemini_tts, chirp_tts, wavenet_tts], stage="tts")
        outcome = await chain.run(lambda p: p.invoke(ssml))
    """

    def __init__(
        self,
        providers: Sequence[Provider],
        stage: str | None = None,
        retry_options: RetryOptions | None = None,
    ) -> None:
        self._providers = list(providers)
        self._stage = stage
        self._retry_options = retry_options
        self._failover_count = 0

        if not self._providers:
            raise PipelineError.critical(
                ErrorCode.FALLBACK_NO_PROVIDERS,
                "At least one provider is required",
                stage=stage,
            )

        if retry_options is not None:
            retry_options.validate()

        logger.debug(
            "Fallback chain initialized",
            stage=stage,
            providers=[p.name for p in self._providers],
        )

    @property
    def providers(self) -> list[Provider]:
        return list(self._providers)

    @property
    def failover_count(self) -> int:
        return self._failover_count

    async def _call_provider(
        self,
        provider: Provider,
        operation: Callable[..., Any],
        args: tuple,
        kwargs: dict[str, Any],
    ) -> tuple[Any, int]:
        if self._retry_options is None:
            return await call_maybe_async(operation, provider, *args, **kwargs), 1

        options = RetryOptions(
            max_retries=self._retry_options.max_retries,
            base_delay_ms=self._retry_options.base_delay_ms,
            max_delay_ms=self._retry_options.max_delay_ms,
            timeout_ms=self._retry_options.timeout_ms,
            stage=self._stage,
            retryable_exceptions=self._retry_options.retryable_exceptions,
        )
        outcome = await RetryPolicy(options).run(operation, provider, *args, **kwargs)
        return outcome.result, outcome.attempts

    async def run(
        self,
        operation: Callable[..., T | Awaitable[T]] | None = None,
        *args: Any,
        on_fallback: OnFallback | None = None,
        **kwargs: Any,
    ) -> FallbackResult[T]:
        """
        Run one logical call against the chain.

        Args:
            operation: Called as operation(provider, *args, **kwargs);
                defaults to provider.invoke(*args, **kwargs)
            on_fallback: Optional callback(from_name, to_name, error)

        Returns:
            FallbackResult naming the provider that answered

        Raises:
            PipelineError: FALLBACK_EXHAUSTED with one entry per provider
        """
        if operation is None:
            async def operation(provider: Provider, *a: Any, **kw: Any) -> Any:
                return await provider.invoke(*a, **kw)

        attempt_log: list[FallbackAttempt] = []

        for idx, provider in enumerate(self._providers):
            tier = ProviderTier.PRIMARY if idx == 0 else ProviderTier.FALLBACK
            start = time.perf_counter()

            try:
                value, attempts = await self._call_provider(provider, operation, args, kwargs)
            except Exception as e:
                duration_ms = int((time.perf_counter() - start) * 1000)
                message, code = _describe(e)
                attempts = 1
                if isinstance(e, PipelineError):
                    attempts = int(e.context.get("retry_attempts", 1))

                attempt_log.append(FallbackAttempt(
                    provider=provider.name,
                    success=False,
                    duration_ms=duration_ms,
                    attempts=attempts,
                    error=message,
                    error_code=code,
                ))

                logger.warning(
                    "Provider failed, attempting failover",
                    stage=self._stage,
                    provider=provider.name,
                    tier=tier.value,
                    error_code=code,
                    error=message[:200],
                )

                if idx + 1 < len(self._providers):
                    next_provider = self._providers[idx + 1]
                    self._failover_count += 1
                    logger.info(
                        "Failing over to next provider",
                        stage=self._stage,
                        from_provider=provider.name,
                        to_provider=next_provider.name,
                    )
                    if on_fallback:
                        try:
                            on_fallback(provider.name, next_provider.name, e)
                        except Exception as callback_error:
                            logger.warning("on_fallback callback failed", error=str(callback_error))
                continue

            duration_ms = int((time.perf_counter() - start) * 1000)
            attempt_log.append(FallbackAttempt(
                provider=provider.name,
                success=True,
                duration_ms=duration_ms,
                attempts=attempts,
            ))

            if tier == ProviderTier.FALLBACK:
                logger.warning(
                    "Fallback provider succeeded",
                    stage=self._stage,
                    provider=provider.name,
                    failed_providers=[a.provider for a in attempt_log if not a.success],
                )

            return FallbackResult(
                value=value,
                provider_name=provider.name,
                tier=tier,
                attempt_log=attempt_log,
            )

        details = "; ".join(f"{a.provider}: {a.error}" for a in attempt_log)
        logger.error(
            "All providers failed",
            stage=self._stage,
            providers=[a.provider for a in attempt_log],
        )
        raise PipelineError.critical(
            ErrorCode.FALLBACK_EXHAUSTED,
            f"All providers failed: {details}",
            stage=self._stage,
            context={"attempts": [a.to_dict() for a in attempt_log]},
        )


async def with_fallback(
    providers: Sequence[Provider],
    operation: Callable[..., T | Awaitable[T]] | None = None,
    *args: Any,
    stage: str | None = None,
    retry_options: RetryOptions | None = None,
    on_fallback: OnFallback | None = None,
    **kwargs: Any,
) -> FallbackResult[T]:
    """Run a single call through a one-off fallback chain."""
    chain = FallbackChain(providers, stage=stage, retry_options=retry_options)
    return await chain.run(operation, *args, on_fallback=on_fallback, **kwargs)
