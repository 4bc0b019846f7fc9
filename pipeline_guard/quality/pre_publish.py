"""
Pre-Publish Decision Engine.

Merges every per-stage quality signal into one publish decision:
- Independent detectors, each raising at most one minor or major issue
- Any major issue, or too many minor issues, forces human review
- Cost overruns are never published around
- Decisions are persisted for audit and linked to a review item
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from typing import Any, Callable, Sequence

import structlog

from pipeline_guard.config.settings import CostSettings, QualitySettings
from pipeline_guard.core.errors import ErrorCode, PipelineError
from pipeline_guard.core.types import ProviderTier, QualityStatus, StageResult
from pipeline_guard.cost.ledger import CostLedger, pipelines_collection, round_cost
from pipeline_guard.review.manager import (
    ReviewItemStatus,
    ReviewItemType,
    ReviewOutcome,
    ReviewQueue,
)
from pipeline_guard.storage.persistence import Persistence

logger = structlog.get_logger(__name__)

QUALITY_DECISION_DOC_ID = "quality-decision"
DECISION_DOC_VERSION = 1

# Stage names read by the detectors
SCRIPT_STAGE = "script-gen"
TTS_STAGE = "tts"
VISUAL_STAGE = "visual-gen"
PRONUNCIATION_STAGE = "pronunciation"
THUMBNAIL_STAGE = "thumbnail"
RENDER_STAGE = "render"


class PublishDecision(str, Enum):
    AUTO_PUBLISH = "AUTO_PUBLISH"
    AUTO_PUBLISH_WITH_WARNING = "AUTO_PUBLISH_WITH_WARNING"
    HUMAN_REVIEW = "HUMAN_REVIEW"


class IssueSeverity(str, Enum):
    MINOR = "minor"
    MAJOR = "major"


class IssueCode:
    """Issue codes raised by the detectors."""

    # Major
    TTS_FALLBACK = "tts-provider-fallback"
    HIGH_VISUAL_FALLBACK = "visual-fallback-30"
    WORD_COUNT_OUT_OF_BOUNDS = "word-count-out-of-bounds"
    PRONUNCIATION_UNRESOLVED = "pronunciation-unknown-3+"
    COMBINED_FALLBACK = "combined-fallback"
    COST_OVER_CEILING = "cost-over-ceiling"

    # Minor
    LOW_VISUAL_FALLBACK = "visual-fallback-low"
    WORD_COUNT_EDGE = "word-count-edge"
    PRONUNCIATION_FEW = "pronunciation-unknown-1-3"
    THUMBNAIL_FALLBACK = "thumbnail-fallback"
    TTS_RETRY_HIGH = "tts-retry-high"


@dataclass(frozen=True)
class QualityIssue:
    """A detected quality problem."""

    code: str
    severity: IssueSeverity
    stage: str
    message: str

    @property
    def is_major(self) -> bool:
        return self.severity == IssueSeverity.MAJOR

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "stage": self.stage,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QualityIssue":
        return cls(
            code=data["code"],
            severity=IssueSeverity(data["severity"]),
            stage=data["stage"],
            message=data["message"],
        )


@dataclass(frozen=True)
class QualityMetricsSummary:
    """Aggregate quality metrics across all stages of a run."""

    total_stages: int = 0
    degraded_stages: int = 0
    fallbacks_used: int = 0
    total_warnings: int = 0
    script_word_count: int = 0
    visual_fallback_percent: float = 0.0
    pronunciation_unknowns: int = 0
    tts_provider: str | None = None
    thumbnail_fallback: bool = False
    total_cost_usd: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_stages": self.total_stages,
            "degraded_stages": self.degraded_stages,
            "fallbacks_used": self.fallbacks_used,
            "total_warnings": self.total_warnings,
            "script_word_count": self.script_word_count,
            "visual_fallback_percent": self.visual_fallback_percent,
            "pronunciation_unknowns": self.pronunciation_unknowns,
            "tts_provider": self.tts_provider,
            "thumbnail_fallback": self.thumbnail_fallback,
            "total_cost_usd": self.total_cost_usd,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QualityMetricsSummary":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class QualityDecision:
    """
    The single publish decision of a pipeline run.

    Created once per run and persisted verbatim. Review outcomes are
    recorded on the review item, never on this record.
    """

    pipeline_id: str
    decision: PublishDecision
    issues: tuple[QualityIssue, ...]
    reasons: tuple[str, ...]
    metrics: QualityMetricsSummary
    stage_summary: dict[str, dict[str, str]] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def requires_review(self) -> bool:
        return self.decision == PublishDecision.HUMAN_REVIEW

    @property
    def major_issues(self) -> list[QualityIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.MAJOR]

    @property
    def minor_issues(self) -> list[QualityIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.MINOR]

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_id": self.pipeline_id,
            "decision": self.decision.value,
            "issues": [i.to_dict() for i in self.issues],
            "reasons": list(self.reasons),
            "metrics": self.metrics.to_dict(),
            "stage_summary": self.stage_summary,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QualityDecision":
        return cls(
            pipeline_id=data["pipeline_id"],
            decision=PublishDecision(data["decision"]),
            issues=tuple(QualityIssue.from_dict(i) for i in data.get("issues", [])),
            reasons=tuple(data.get("reasons", [])),
            metrics=QualityMetricsSummary.from_dict(data.get("metrics", {})),
            stage_summary=data.get("stage_summary", {}),
            timestamp=data["timestamp"],
        )


@dataclass
class PipelineQualityContext:
    """Everything the decision engine looks at for one pipeline run."""

    pipeline_id: str
    stages: dict[str, StageResult] = field(default_factory=dict)
    total_cost_usd: float | None = None

    def stage(self, name: str) -> StageResult | None:
        return self.stages.get(name)

    def resolved_total_cost(self) -> float:
        if self.total_cost_usd is not None:
            return self.total_cost_usd
        return round_cost(sum(s.cost_summary.total_cost_usd for s in self.stages.values()))


@dataclass(frozen=True)
class PublishGateResult:
    """Outcome of the pre-publish gate for one run."""

    decision: QualityDecision
    review_id: str | None = None

    @property
    def can_publish(self) -> bool:
        return not self.decision.requires_review


Detector = Callable[[PipelineQualityContext], "QualityIssue | None"]


# =============================================================================
# Detectors
# =============================================================================


def detect_provider_fallback(
    context: PipelineQualityContext,
    settings: QualitySettings,
) -> QualityIssue | None:
    """Major: a critical stage was answered by a fallback provider."""
    for stage_name in settings.critical_provider_stages:
        stage = context.stage(stage_name)
        if stage is None or not stage.used_fallback:
            continue
        return QualityIssue(
            code=IssueCode.TTS_FALLBACK if stage_name == TTS_STAGE else f"{stage_name}-provider-fallback",
            severity=IssueSeverity.MAJOR,
            stage=stage_name,
            message=f"Fallback provider used: {stage.provider_info.name} (primary unavailable)",
        )
    return None


def detect_retry_count(
    context: PipelineQualityContext,
    settings: QualitySettings,
) -> QualityIssue | None:
    """Minor: a primary provider needed many attempts before succeeding."""
    for stage_name in settings.critical_provider_stages:
        stage = context.stage(stage_name)
        if stage is None:
            continue
        info = stage.provider_info
        if info.tier == ProviderTier.PRIMARY and info.attempts > settings.retry_attempts_threshold:
            return QualityIssue(
                code=IssueCode.TTS_RETRY_HIGH if stage_name == TTS_STAGE else f"{stage_name}-retry-high",
                severity=IssueSeverity.MINOR,
                stage=stage_name,
                message=f"{stage_name} required {info.attempts} attempts before succeeding",
            )
    return None


def _visual_counts(context: PipelineQualityContext) -> tuple[int, int] | None:
    stage = context.stage(VISUAL_STAGE)
    if stage is None:
        return None
    fallback_count = int(stage.measurement("fallback_count", 0) or 0)
    total_scenes = int(stage.measurement("total_scenes", 0) or 0)
    return fallback_count, total_scenes


def detect_visual_fallback_ratio(
    context: PipelineQualityContext,
    settings: QualitySettings,
) -> QualityIssue | None:
    """Major above the ratio threshold of fallback visuals, minor for any."""
    counts = _visual_counts(context)
    if counts is None:
        return None
    fallback_count, total_scenes = counts
    if total_scenes <= 0 or fallback_count <= 0:
        return None

    ratio = fallback_count / total_scenes
    percent = round(ratio * 100, 1)
    if ratio > settings.visual_fallback_major_ratio:
        return QualityIssue(
            code=IssueCode.HIGH_VISUAL_FALLBACK,
            severity=IssueSeverity.MAJOR,
            stage=VISUAL_STAGE,
            message=f"{percent}% of visuals used fallback ({fallback_count}/{total_scenes})",
        )
    return QualityIssue(
        code=IssueCode.LOW_VISUAL_FALLBACK,
        severity=IssueSeverity.MINOR,
        stage=VISUAL_STAGE,
        message=f"{percent}% of visuals used fallback ({fallback_count}/{total_scenes})",
    )


def detect_word_count(
    context: PipelineQualityContext,
    settings: QualitySettings,
) -> QualityIssue | None:
    """Major outside the inclusive bounds, minor inside the edge margin."""
    stage = context.stage(SCRIPT_STAGE)
    if stage is None:
        return None
    word_count = stage.measurement("word_count")
    if word_count is None:
        return None
    word_count = int(word_count)

    low, high = settings.word_count_min, settings.word_count_max
    if word_count < low or word_count > high:
        return QualityIssue(
            code=IssueCode.WORD_COUNT_OUT_OF_BOUNDS,
            severity=IssueSeverity.MAJOR,
            stage=SCRIPT_STAGE,
            message=f"Word count {word_count} is outside range [{low}, {high}]",
        )

    edge_low = low * (1 + settings.word_count_edge_margin)
    edge_high = high * (1 - settings.word_count_edge_margin)
    if word_count < edge_low or word_count > edge_high:
        return QualityIssue(
            code=IssueCode.WORD_COUNT_EDGE,
            severity=IssueSeverity.MINOR,
            stage=SCRIPT_STAGE,
            message=f"Word count {word_count} is near the edge of range [{low}, {high}]",
        )
    return None


def _pronunciation_unknowns(context: PipelineQualityContext) -> int:
    stage = context.stage(PRONUNCIATION_STAGE)
    if stage is None:
        return 0
    unresolved = stage.measurement("unresolved_count")
    if unresolved is None:
        unresolved = stage.measurement("unknown_count", 0)
    return int(unresolved or 0)


def detect_pronunciation(
    context: PipelineQualityContext,
    settings: QualitySettings,
) -> QualityIssue | None:
    """Major above the unresolved-term threshold, minor for any."""
    unresolved = _pronunciation_unknowns(context)
    if unresolved > settings.pronunciation_major_threshold:
        return QualityIssue(
            code=IssueCode.PRONUNCIATION_UNRESOLVED,
            severity=IssueSeverity.MAJOR,
            stage=PRONUNCIATION_STAGE,
            message=f"{unresolved} unresolved pronunciation terms",
        )
    if unresolved > 0:
        return QualityIssue(
            code=IssueCode.PRONUNCIATION_FEW,
            severity=IssueSeverity.MINOR,
            stage=PRONUNCIATION_STAGE,
            message=f"{unresolved} unresolved pronunciation term(s)",
        )
    return None


def detect_thumbnail_fallback(
    context: PipelineQualityContext,
    settings: QualitySettings,
) -> QualityIssue | None:
    """Minor: the thumbnail came from a fallback template."""
    stage = context.stage(THUMBNAIL_STAGE)
    if stage is None or not stage.used_fallback:
        return None
    return QualityIssue(
        code=IssueCode.THUMBNAIL_FALLBACK,
        severity=IssueSeverity.MINOR,
        stage=THUMBNAIL_STAGE,
        message=f"Thumbnail using fallback template ({stage.provider_info.name})",
    )


def detect_combined_fallback(
    context: PipelineQualityContext,
    settings: QualitySettings,
) -> QualityIssue | None:
    """Major: thumbnail fallback together with any visual fallback."""
    thumbnail = context.stage(THUMBNAIL_STAGE)
    counts = _visual_counts(context)
    if thumbnail is None or not thumbnail.used_fallback or counts is None:
        return None
    if counts[0] <= 0:
        return None
    return QualityIssue(
        code=IssueCode.COMBINED_FALLBACK,
        severity=IssueSeverity.MAJOR,
        stage="combined",
        message="Thumbnail fallback combined with visual fallbacks",
    )


def detect_cost_overrun(
    context: PipelineQualityContext,
    ceiling: float,
) -> QualityIssue | None:
    """Major: the run cost more than the hard ceiling."""
    total = context.resolved_total_cost()
    if total <= ceiling:
        return None
    return QualityIssue(
        code=IssueCode.COST_OVER_CEILING,
        severity=IssueSeverity.MAJOR,
        stage="cost",
        message=f"Total cost ${total:.2f} exceeds limit ${ceiling:.2f}",
    )


def default_detectors(
    settings: QualitySettings,
    cost_ceiling: float,
) -> list[Detector]:
    """Standard detector set, in evaluation order."""
    return [
        partial(detect_provider_fallback, settings=settings),
        partial(detect_retry_count, settings=settings),
        partial(detect_visual_fallback_ratio, settings=settings),
        partial(detect_word_count, settings=settings),
        partial(detect_pronunciation, settings=settings),
        partial(detect_thumbnail_fallback, settings=settings),
        partial(detect_combined_fallback, settings=settings),
        partial(detect_cost_overrun, ceiling=cost_ceiling),
    ]


# =============================================================================
# Decision
# =============================================================================


def determine_decision(
    issues: Sequence[QualityIssue],
    max_minor_issues: int = 2,
) -> tuple[PublishDecision, list[str]]:
    """Apply the publish rule to a set of issues."""
    major = [i for i in issues if i.severity == IssueSeverity.MAJOR]
    minor = [i for i in issues if i.severity == IssueSeverity.MINOR]

    if major:
        reasons = [f"[MAJOR] {i.stage}: {i.message}" for i in major]
        reasons += [f"[WARNING] {i.stage}: {i.message}" for i in minor]
        return PublishDecision.HUMAN_REVIEW, reasons

    if len(minor) > max_minor_issues:
        reasons = [f"Too many minor issues ({len(minor)} > {max_minor_issues})"]
        reasons += [f"[WARNING] {i.stage}: {i.message}" for i in minor]
        return PublishDecision.HUMAN_REVIEW, reasons

    if minor:
        return (
            PublishDecision.AUTO_PUBLISH_WITH_WARNING,
            [f"[WARNING] {i.stage}: {i.message}" for i in minor],
        )

    return PublishDecision.AUTO_PUBLISH, ["All quality checks passed - no issues detected"]


def calculate_metrics(context: PipelineQualityContext) -> QualityMetricsSummary:
    """Aggregate metrics snapshot stored with the decision."""
    stages = list(context.stages.values())
    degraded = [
        s for s in stages
        if s.used_fallback or s.quality_report.status in (QualityStatus.WARN, QualityStatus.FAIL)
    ]

    script = context.stage(SCRIPT_STAGE)
    word_count = int(script.measurement("word_count", 0) or 0) if script else 0

    counts = _visual_counts(context)
    visual_percent = 0.0
    if counts and counts[1] > 0:
        visual_percent = round(counts[0] / counts[1] * 100, 1)

    tts = context.stage(TTS_STAGE)
    thumbnail = context.stage(THUMBNAIL_STAGE)

    return QualityMetricsSummary(
        total_stages=len(stages),
        degraded_stages=len(degraded),
        fallbacks_used=sum(1 for s in stages if s.used_fallback),
        total_warnings=sum(len(s.warnings) for s in stages),
        script_word_count=word_count,
        visual_fallback_percent=visual_percent,
        pronunciation_unknowns=_pronunciation_unknowns(context),
        tts_provider=tts.provider_info.name if tts else None,
        thumbnail_fallback=bool(thumbnail and thumbnail.used_fallback),
        total_cost_usd=context.resolved_total_cost(),
    )


def summarize_stages(
    context: PipelineQualityContext,
    issues: Sequence[QualityIssue],
) -> dict[str, dict[str, str]]:
    """Map each stage to pass/warn/fail and the tier that served it."""
    summary = {}
    for name, stage in context.stages.items():
        stage_issues = [i for i in issues if i.stage == name]
        if any(i.is_major for i in stage_issues):
            status = "fail"
        elif stage_issues:
            status = "warn"
        else:
            status = "pass"
        summary[name] = {"status": status, "tier": stage.provider_info.tier.value}
    return summary


def extract_preview_urls(context: PipelineQualityContext) -> dict[str, str | None]:
    """Artifact URLs an operator needs to review the run."""

    def find(stage_name: str, artifact_type: str | None) -> str | None:
        stage = context.stage(stage_name)
        if stage is None:
            return None
        for artifact in stage.artifacts:
            if artifact_type is None or artifact.get("type") == artifact_type:
                return artifact.get("url")
        return None

    return {
        "video": find(RENDER_STAGE, "video"),
        "thumbnail": find(THUMBNAIL_STAGE, None),
        "script": find(SCRIPT_STAGE, "text"),
    }


class PrePublishDecisionEngine:
    """
    Produces the publish decision for a pipeline run.

    Usage:
        engine = PrePublishDecisionEngine(persistence, ReviewQueue(persistence))
        outcome = await engine.evaluate(context)
        if outcome.can_publish:
            ...
    """

    def __init__(
        self,
        persistence: Persistence | None = None,
        review_queue: ReviewQueue | None = None,
        settings: QualitySettings | None = None,
        cost_settings: CostSettings | None = None,
        detectors: Sequence[Detector] | None = None,
    ):
        if settings is None or cost_settings is None:
            from pipeline_guard.config.settings import get_settings
            app_settings = get_settings()
            settings = settings or app_settings.quality
            cost_settings = cost_settings or app_settings.cost

        self._persistence = persistence
        self._review_queue = review_queue
        self._settings = settings
        self._detectors = list(
            detectors if detectors is not None
            else default_detectors(settings, cost_settings.publish_ceiling)
        )

    def detect_issues(self, context: PipelineQualityContext) -> list[QualityIssue]:
        """Run all detectors, skipping any that fail, and dedupe by code."""
        issues: list[QualityIssue] = []
        seen: set[str] = set()

        for detector in self._detectors:
            try:
                issue = detector(context)
            except Exception as e:
                logger.error(
                    "Quality detector failed",
                    pipeline_id=context.pipeline_id,
                    detector=getattr(detector, "__name__", None)
                    or getattr(getattr(detector, "func", None), "__name__", repr(detector)),
                    error=str(e),
                )
                continue
            if issue is not None and issue.code not in seen:
                seen.add(issue.code)
                issues.append(issue)

        return issues

    def decide(self, context: PipelineQualityContext) -> QualityDecision:
        """Evaluate a run and return its publish decision."""
        issues = self.detect_issues(context)
        decision, reasons = determine_decision(issues, self._settings.max_minor_issues)

        result = QualityDecision(
            pipeline_id=context.pipeline_id,
            decision=decision,
            issues=tuple(issues),
            reasons=tuple(reasons),
            metrics=calculate_metrics(context),
            stage_summary=summarize_stages(context, issues),
        )

        logger.info(
            "Pre-publish quality decision",
            pipeline_id=context.pipeline_id,
            decision=decision.value,
            major_issues=len(result.major_issues),
            minor_issues=len(result.minor_issues),
        )
        return result

    async def persist_decision(self, decision: QualityDecision, review_id: str | None = None) -> bool:
        """Store the decision for audit. Failures are logged, not raised."""
        if self._persistence is None:
            return False
        document = {
            **decision.to_dict(),
            "version": DECISION_DOC_VERSION,
            "review_id": review_id,
        }
        try:
            await self._persistence.set_document(
                pipelines_collection(decision.pipeline_id),
                QUALITY_DECISION_DOC_ID,
                document,
            )
        except Exception as e:
            logger.error(
                "Failed to persist quality decision",
                pipeline_id=decision.pipeline_id,
                error=str(e),
            )
            return False
        return True

    async def load_decision_document(self, pipeline_id: str) -> dict[str, Any] | None:
        if self._persistence is None:
            return None
        return await self._persistence.get_document(
            pipelines_collection(pipeline_id), QUALITY_DECISION_DOC_ID
        )

    async def get_quality_decision(self, pipeline_id: str) -> QualityDecision | None:
        doc = await self.load_decision_document(pipeline_id)
        return QualityDecision.from_dict(doc) if doc else None

    async def create_review_item(
        self,
        decision: QualityDecision,
        context: PipelineQualityContext,
    ) -> str:
        """Queue a human review for a HUMAN_REVIEW decision."""
        if self._review_queue is None:
            raise PipelineError.critical(
                ErrorCode.CONFIG_ERROR,
                "PrePublishDecisionEngine has no review queue",
            )

        existing = await self._review_queue.get_queue(
            status=ReviewItemStatus.PENDING,
            type=ReviewItemType.QUALITY,
            pipeline_id=decision.pipeline_id,
        )
        if existing:
            logger.info(
                "Quality review already pending",
                pipeline_id=decision.pipeline_id,
                review_id=existing[0].id,
            )
            return existing[0].id

        stage_quality = {
            name: {
                **decision.stage_summary.get(name, {}),
                "metrics": dict(stage.quality_report.measurements),
            }
            for name, stage in context.stages.items()
        }
        review_id = await self._review_queue.add_item(
            ReviewItemType.QUALITY,
            pipeline_id=decision.pipeline_id,
            stage="pre-publish",
            item={
                "decision": decision.decision.value,
                "issues": [i.to_dict() for i in decision.issues if i.is_major]
                or [i.to_dict() for i in decision.issues],
                "preview_urls": extract_preview_urls(context),
            },
            context={
                "quality_decision": decision.to_dict(),
                "stage_quality": stage_quality,
            },
        )

        logger.info(
            "Quality review item created",
            pipeline_id=decision.pipeline_id,
            review_id=review_id,
            issue_count=len(decision.issues),
        )
        return review_id

    async def evaluate(self, context: PipelineQualityContext) -> PublishGateResult:
        """
        Run the full pre-publish gate.

        Decides, queues a review when human review is required, and
        persists the decision together with the review ID.

        Raises:
            PipelineError: CONFIG_ERROR when review is required and the
                engine has no review queue
        """
        if context.total_cost_usd is None and self._persistence is not None:
            stored = await CostLedger.get_pipeline_costs(self._persistence, context.pipeline_id)
            if stored is not None:
                context.total_cost_usd = float(stored.get("total", 0.0))

        decision = self.decide(context)

        review_id = None
        if decision.requires_review:
            review_id = await self.create_review_item(decision, context)

        await self.persist_decision(decision, review_id)
        return PublishGateResult(decision=decision, review_id=review_id)

    async def handle_review_approval(self, review_id: str, resolved_by: str) -> bool:
        """Approve a pending quality review so the run may publish."""
        return await self._close_review(
            review_id,
            resolved_by,
            ReviewOutcome.APPROVED,
            "Quality review approved - proceeding to publish",
        )

    async def handle_review_rejection(
        self,
        review_id: str,
        resolved_by: str,
        reason: str | None = None,
    ) -> bool:
        """Reject a pending quality review. The run will not publish."""
        resolution = "Quality review rejected - publish skipped"
        if reason:
            resolution = f"{resolution}: {reason}"
        return await self._close_review(review_id, resolved_by, ReviewOutcome.REJECTED, resolution)

    async def _close_review(
        self,
        review_id: str,
        resolved_by: str,
        outcome: ReviewOutcome,
        resolution: str,
    ) -> bool:
        if self._review_queue is None:
            raise PipelineError.critical(
                ErrorCode.CONFIG_ERROR,
                "PrePublishDecisionEngine has no review queue",
            )

        item = await self._review_queue.get_item(review_id)
        if item is None:
            logger.warning("Review item not found", review_id=review_id)
            return False
        if not item.is_pending:
            logger.warning("Review item already resolved", review_id=review_id, status=item.status.value)
            return False

        await self._review_queue.resolve_item(review_id, resolution, resolved_by, outcome)
        logger.info(
            "Quality review closed",
            review_id=review_id,
            pipeline_id=item.pipeline_id,
            outcome=outcome.value,
            resolved_by=resolved_by,
        )
        return True

    async def publish_allowed(self, pipeline_id: str) -> bool:
        """
        Whether the publish step may run for a pipeline.

        Requires a stored decision. HUMAN_REVIEW decisions additionally
        require their review item to be resolved as approved.
        """
        doc = await self.load_decision_document(pipeline_id)
        if doc is None:
            return False
        if PublishDecision(doc["decision"]) != PublishDecision.HUMAN_REVIEW:
            return True

        review_id = doc.get("review_id")
        if not review_id or self._review_queue is None:
            return False
        item = await self._review_queue.get_item(review_id)
        return bool(
            item
            and item.status == ReviewItemStatus.RESOLVED
            and item.outcome == ReviewOutcome.APPROVED
        )
