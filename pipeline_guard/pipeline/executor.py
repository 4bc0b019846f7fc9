"""
Stage Executor.

Runs one unit of work as a pipeline stage:
- Injects a per-stage cost ledger into the stage config
- Resolves which provider tier answered
- Optional quality gate check
- Normalizes every failure into a PipelineError
- Keeps costs recorded before a failure
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, TypeVar

import structlog

from pipeline_guard.core.errors import ErrorCode, PipelineError
from pipeline_guard.core.types import ProviderInfo, QualityReport, QualityStatus, StageResult
from pipeline_guard.cost.ledger import CostLedger
from pipeline_guard.observability.logging import LogContext
from pipeline_guard.quality.gates import QualityGateRegistry
from pipeline_guard.reliability.fallback import FallbackResult
from pipeline_guard.reliability.retry_handler import call_maybe_async
from pipeline_guard.storage.persistence import Persistence

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

UnitOfWork = Callable[[Any, dict[str, Any]], Any]


@dataclass
class StageInput:
    """Input handed to a stage by the orchestrator."""

    pipeline_id: str
    data: Any = None
    config: dict[str, Any] = field(default_factory=dict)
    previous_stage: str | None = None


@dataclass
class UnitResult:
    """Richer return value for a unit of work."""

    data: Any
    provider: ProviderInfo | None = None
    measurements: dict[str, Any] = field(default_factory=dict)
    artifacts: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def resolve_provider_info(raw: Any) -> ProviderInfo:
    """Find out which provider answered a unit of work."""
    if isinstance(raw, UnitResult) and raw.provider is not None:
        return raw.provider
    if isinstance(raw, FallbackResult):
        return raw.provider_info
    if isinstance(raw, Mapping) and raw.get("provider") is not None:
        provider = raw["provider"]
        if isinstance(provider, ProviderInfo):
            return provider
        if isinstance(provider, Mapping):
            return ProviderInfo.from_dict(dict(provider))
    return ProviderInfo.default()


class StageExecutor:
    """
    Executes pipeline stages with cost tracking and quality gates.

    Usage:
        executor = StageExecutor(QualityGateRegistry(default_gates()), persistence)
        result = await executor.execute(
            StageInput(pipeline_id="2026-01-22", data=brief),
            "script-gen",
            generate_script,
            quality_gate=True,
        )
    """

    def __init__(
        self,
        gate_registry: QualityGateRegistry | None = None,
        persistence: Persistence | None = None,
    ):
        self._gates = gate_registry or QualityGateRegistry()
        self._persistence = persistence

    async def execute(
        self,
        stage_input: StageInput,
        stage_name: str,
        unit_of_work: UnitOfWork,
        quality_gate: bool = False,
    ) -> StageResult:
        """
        Run a unit of work as the named stage.

        Args:
            stage_input: Pipeline ID, payload and stage config
            stage_name: Name used for costs, gates and logs
            unit_of_work: Called as unit_of_work(data, config); config
                carries the stage CostLedger under "tracker"
            quality_gate: Run the registered gate for this stage

        Returns:
            StageResult with cost summary, quality report and provider info

        Raises:
            PipelineError: every failure, with the stage name and the
                costs recorded so far under context["cost_summary"]
        """
        with LogContext(pipeline_id=stage_input.pipeline_id, stage=stage_name):
            start = time.perf_counter()
            logger.info("Stage started", previous_stage=stage_input.previous_stage)

            ledger: CostLedger | None = None
            persist_attempted = False
            try:
                ledger = CostLedger(stage_input.pipeline_id, stage_name, self._persistence)
                result = await self._run(stage_input, stage_name, unit_of_work, quality_gate, ledger, start)
                if self._persistence is not None:
                    persist_attempted = True
                    await ledger.persist()
            except Exception as e:
                error = PipelineError.from_error(e, stage_name)
                if ledger is not None:
                    error.context.setdefault("cost_summary", ledger.summary().to_dict())
                    if not persist_attempted:
                        await self._persist_partial_costs(ledger)
                logger.error(
                    "Stage failed",
                    error_code=error.code,
                    severity=error.severity.value,
                    error=error.message,
                    cost_usd=ledger.summary().total_cost_usd if ledger is not None else 0.0,
                    duration_ms=int((time.perf_counter() - start) * 1000),
                )
                if error is e:
                    raise
                raise error from e

            status = result.quality_report.status
            log = logger.warning if status == QualityStatus.WARN or result.used_fallback else logger.info
            log(
                "Stage complete",
                duration_ms=result.duration_ms,
                cost_usd=result.cost_summary.total_cost_usd,
                provider=result.provider_info.name,
                tier=result.provider_info.tier.value,
                quality_status=status.value if status else None,
            )
            return result

    async def _persist_partial_costs(self, ledger: CostLedger) -> None:
        """Store costs recorded before a stage failed; never raises."""
        if self._persistence is None or not ledger.entries:
            return
        try:
            await ledger.persist()
        except Exception as persist_error:
            logger.error(
                "Failed to persist costs for failed stage",
                error=str(persist_error),
                cost_usd=ledger.summary().total_cost_usd,
            )

    async def _run(
        self,
        stage_input: StageInput,
        stage_name: str,
        unit_of_work: UnitOfWork,
        quality_gate: bool,
        ledger: CostLedger,
        start: float,
    ) -> StageResult:
        config = {**stage_input.config, "tracker": ledger}

        raw = await call_maybe_async(unit_of_work, stage_input.data, config)

        provider_info = resolve_provider_info(raw)
        measurements: dict[str, Any] = {}
        artifacts: list[dict[str, Any]] = []
        warnings: list[str] = []
        if isinstance(raw, UnitResult):
            data = raw.data
            measurements.update(raw.measurements)
            artifacts.extend(raw.artifacts)
            warnings.extend(raw.warnings)
        elif isinstance(raw, FallbackResult):
            data = raw.value
        else:
            data = raw

        status = None
        if quality_gate:
            gate_input = raw if isinstance(raw, UnitResult) else data
            gate = await self._gates.check(stage_name, gate_input)
            if not gate.passed:
                raise PipelineError.degraded(
                    ErrorCode.QUALITY_GATE_FAIL,
                    gate.reason or f"Quality gate failed for stage: {stage_name}",
                    stage=stage_name,
                    context={"quality_gate": gate.to_dict()},
                )
            status = gate.status
            measurements = {**gate.metrics, **measurements}
            warnings.extend(gate.warnings)

        return StageResult(
            success=True,
            data=data,
            cost_summary=ledger.summary(),
            quality_report=QualityReport(
                stage=stage_name,
                measurements=measurements,
                status=status,
            ),
            duration_ms=int((time.perf_counter() - start) * 1000),
            provider_info=provider_info,
            warnings=tuple(warnings),
            artifacts=tuple(artifacts),
        )


async def gather_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int = 4,
) -> list[R]:
    """
    Run worker over items with at most `limit` in flight.

    Results keep the input order. The first failure propagates.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    semaphore = asyncio.Semaphore(limit)

    async def run_with_semaphore(item: T) -> R:
        async with semaphore:
            return await worker(item)

    return list(await asyncio.gather(*(run_with_semaphore(item) for item in items)))
