"""
Stage Quality Gates.

Evaluates a stage's output against stage-specific thresholds:
- Gates are plain functions injected per stage name
- Missing gates pass with a warning
- Gate exceptions are downgraded to FAIL results
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

import structlog

from pipeline_guard.config.settings import QualitySettings
from pipeline_guard.core.types import QualityStatus
from pipeline_guard.reliability.retry_handler import call_maybe_async

logger = structlog.get_logger(__name__)


@dataclass
class QualityGateResult:
    """Outcome of one stage quality gate."""

    stage: str
    status: QualityStatus = QualityStatus.PASS
    metrics: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    reason: str | None = None

    @property
    def passed(self) -> bool:
        return self.status != QualityStatus.FAIL

    def fail(self, reason: str) -> None:
        """Mark the result failed, joining multiple reasons."""
        self.status = QualityStatus.FAIL
        self.reason = f"{self.reason}; {reason}" if self.reason else reason

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def finalize(self) -> "QualityGateResult":
        """Promote PASS to WARN when warnings were emitted."""
        if self.status == QualityStatus.PASS and self.warnings:
            self.status = QualityStatus.WARN
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "status": self.status.value,
            "metrics": self.metrics,
            "warnings": self.warnings,
            "reason": self.reason,
        }


QualityGate = Callable[[Any], QualityGateResult | Awaitable[QualityGateResult]]


def read_metric(output: Any, key: str, default: Any = None) -> Any:
    """
    Read a measurement from a stage output.

    Looks in quality measurements first, then the data payload, then the
    output itself when it is a mapping.
    """
    sources: list[Mapping[str, Any]] = []
    if isinstance(output, Mapping):
        quality = output.get("quality")
        if isinstance(quality, Mapping) and isinstance(quality.get("measurements"), Mapping):
            sources.append(quality["measurements"])
        if isinstance(output.get("measurements"), Mapping):
            sources.append(output["measurements"])
        if isinstance(output.get("data"), Mapping):
            sources.append(output["data"])
        sources.append(output)
    else:
        measurements = getattr(output, "measurements", None)
        if isinstance(measurements, Mapping):
            sources.append(measurements)
        data = getattr(output, "data", None)
        if isinstance(data, Mapping):
            sources.append(data)

    for source in sources:
        if key in source and source[key] is not None:
            return source[key]
    return default


class QualityGateRegistry:
    """
    Registry of per-stage quality gates.

    Usage:
        registry = QualityGateRegistry(default_gates())
        result = await registry.check("script-gen", {"word_count": 1450})
    """

    def __init__(self, gates: Mapping[str, QualityGate] | None = None):
        self._gates: dict[str, QualityGate] = dict(gates or {})

    @property
    def stages(self) -> list[str]:
        return list(self._gates)

    def has_gate(self, stage: str) -> bool:
        return stage in self._gates

    def register(self, stage: str, gate: QualityGate) -> None:
        self._gates[stage] = gate
        logger.debug("Registered quality gate", stage=stage)

    async def check(self, stage: str, output: Any) -> QualityGateResult:
        """Run the gate registered for a stage."""
        gate = self._gates.get(stage)

        if gate is None:
            logger.warning("No quality gate registered for stage", stage=stage)
            return QualityGateResult(
                stage=stage,
                status=QualityStatus.PASS,
                warnings=[f"No quality gate defined for stage: {stage}"],
            )

        try:
            result = await call_maybe_async(gate, output)
        except Exception as e:
            logger.error("Quality gate execution failed", stage=stage, error=str(e))
            return QualityGateResult(
                stage=stage,
                status=QualityStatus.FAIL,
                reason=f"Quality gate execution failed: {e}",
            )

        logger.info(
            "Quality gate complete",
            stage=stage,
            status=result.status.value,
            metrics=result.metrics,
        )
        return result


def default_gates(settings: QualitySettings | None = None) -> dict[str, QualityGate]:
    """Standard gates for the content pipeline stages."""
    if settings is None:
        from pipeline_guard.config.settings import get_settings
        settings = get_settings().quality

    def script_gate(output: Any) -> QualityGateResult:
        word_count = int(read_metric(output, "word_count", 0))
        result = QualityGateResult(stage="script-gen", metrics={"word_count": word_count})
        if not settings.word_count_min <= word_count <= settings.word_count_max:
            result.fail(
                f"Word count {word_count} is outside range "
                f"[{settings.word_count_min}, {settings.word_count_max}]"
            )
        return result.finalize()

    def tts_gate(output: Any) -> QualityGateResult:
        silence_pct = float(read_metric(output, "silence_pct", 0.0))
        clipping = bool(read_metric(output, "clipping_detected", False))
        result = QualityGateResult(
            stage="tts",
            metrics={"silence_pct": silence_pct, "clipping_detected": clipping},
        )
        if silence_pct >= settings.max_silence_pct:
            result.fail(f"Silence percentage {silence_pct}% exceeds limit {settings.max_silence_pct}%")
        if clipping:
            result.fail("Clipping detected")
        return result.finalize()

    def render_gate(output: Any) -> QualityGateResult:
        frame_drops = int(read_metric(output, "frame_drops", 0))
        audio_sync_ms = float(read_metric(output, "audio_sync_ms", 0.0))
        result = QualityGateResult(
            stage="render",
            metrics={"frame_drops": frame_drops, "audio_sync_ms": audio_sync_ms},
        )
        if frame_drops > 0:
            result.fail(f"Detected {frame_drops} frame drops")
        if abs(audio_sync_ms) >= settings.max_audio_sync_ms:
            result.fail(f"Audio sync offset {audio_sync_ms}ms exceeds {settings.max_audio_sync_ms}ms")
        return result.finalize()

    def thumbnail_gate(output: Any) -> QualityGateResult:
        variants = read_metric(output, "variants", [])
        if isinstance(output, (list, tuple)):
            variants = output
        count = len(variants) if isinstance(variants, (list, tuple)) else int(variants)
        result = QualityGateResult(stage="thumbnail", metrics={"variants_generated": count})
        if count != settings.thumbnail_variants:
            result.fail(f"Expected {settings.thumbnail_variants} thumbnail variants, got {count}")
        return result.finalize()

    def news_gate(output: Any) -> QualityGateResult:
        selected = read_metric(output, "selected")
        fallback = bool(read_metric(output, "fallback", False))
        candidates = len(read_metric(output, "candidates", []) or [])
        deep_dive = len(read_metric(output, "deep_dive_candidates", []) or [])
        result = QualityGateResult(
            stage="news-sourcing",
            metrics={
                "selected": bool(selected),
                "fallback": fallback,
                "candidate_count": candidates,
                "deep_dive_count": deep_dive,
            },
        )
        if not fallback and not selected:
            result.fail("No topic selected and fallback not triggered")
        if fallback and deep_dive == 0:
            result.warn("Fallback triggered but no deep dive candidates identified")
        if candidates < 3 and not fallback:
            result.warn(f"Low candidate count: {candidates}")
        return result.finalize()

    def research_gate(output: Any) -> QualityGateResult:
        word_count = int(read_metric(output, "word_count", 0))
        brief = read_metric(output, "brief", "") or ""
        result = QualityGateResult(
            stage="research",
            metrics={"word_count": word_count, "brief_length": len(brief)},
        )
        if word_count < settings.research_min_words:
            result.fail(
                f"Research brief word count {word_count} is below minimum {settings.research_min_words}"
            )
        if not brief.strip():
            result.fail("Research brief is empty")
        if word_count > settings.research_max_words:
            result.warn(
                f"Word count {word_count} exceeds recommended maximum of {settings.research_max_words}"
            )
        return result.finalize()

    return {
        "news-sourcing": news_gate,
        "research": research_gate,
        "script-gen": script_gate,
        "tts": tts_gate,
        "render": render_gate,
        "thumbnail": thumbnail_gate,
    }
