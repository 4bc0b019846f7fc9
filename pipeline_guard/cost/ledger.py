"""
Cost Ledger.

Records priced API calls for one pipeline stage:
- Append-only entries with raw (unrounded) costs
- Per-service aggregation rounded to 4 decimals at summary time
- Auditable service categorization rules
- Merge into the per-pipeline cost document
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Mapping

import structlog

from pipeline_guard.core.errors import ErrorCode, PipelineError
from pipeline_guard.storage.persistence import Persistence

logger = structlog.get_logger(__name__)

COST_DOC_ID = "costs"
COST_PRECISION = Decimal("0.0001")


def pipelines_collection(pipeline_id: str) -> str:
    return f"pipelines/{pipeline_id}"


def round_cost(value: float | Decimal) -> float:
    """Round a USD amount to 4 decimal places (half up)."""
    return float(Decimal(str(value)).quantize(COST_PRECISION, rounding=ROUND_HALF_UP))


def validate_pipeline_id(pipeline_id: str) -> str:
    """Ensure a pipeline ID is a real calendar date in YYYY-MM-DD form."""
    try:
        parsed = date.fromisoformat(pipeline_id)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None or parsed.isoformat() != pipeline_id:
        raise PipelineError.critical(
            ErrorCode.VALIDATION_ERROR,
            f"Invalid pipeline id {pipeline_id!r}: expected a YYYY-MM-DD date",
            context={"pipeline_id": pipeline_id},
        )
    return pipeline_id


class CostCategory(str, Enum):
    """Billing category of a priced service."""
    GEMINI = "gemini"
    TTS = "tts"
    RENDER = "render"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CategoryRule:
    """Maps services to a category by name prefix or substring."""

    category: CostCategory
    prefix: str | None = None
    contains: str | None = None

    def matches(self, service: str) -> bool:
        name = service.lower()
        if self.prefix is not None and name.startswith(self.prefix):
            return True
        if self.contains is not None and self.contains in name:
            return True
        return False


# Evaluated in order; first match wins
DEFAULT_CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(CostCategory.GEMINI, prefix="gemini-"),
    CategoryRule(CostCategory.TTS, prefix="chirp"),
    CategoryRule(CostCategory.TTS, prefix="wavenet"),
    CategoryRule(CostCategory.TTS, contains="-tts"),
    CategoryRule(CostCategory.RENDER, prefix="render"),
    CategoryRule(CostCategory.RENDER, contains="video-render"),
)


def categorize_service(
    service: str,
    rules: tuple[CategoryRule, ...] = DEFAULT_CATEGORY_RULES,
) -> CostCategory:
    """Return the category of the first matching rule, or UNKNOWN."""
    for rule in rules:
        if rule.matches(service):
            return rule.category
    return CostCategory.UNKNOWN


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by a provider."""

    input: int | None = None
    output: int | None = None

    @classmethod
    def coerce(cls, tokens: "TokenUsage | Mapping[str, int] | None") -> "TokenUsage":
        if tokens is None:
            return cls()
        if isinstance(tokens, TokenUsage):
            return tokens
        return cls(input=tokens.get("input"), output=tokens.get("output"))


@dataclass(frozen=True)
class CostEntry:
    """One priced call. Never mutated after insertion."""

    service: str
    cost_usd: float
    tokens_in: int | None = None
    tokens_out: int | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "cost_usd": self.cost_usd,
            "tokens": {"input": self.tokens_in, "output": self.tokens_out},
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ServiceCostBreakdown:
    """Aggregated cost of one service."""

    service: str
    category: CostCategory
    cost_usd: float
    calls: int
    tokens_in: int | None = None
    tokens_out: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "category": self.category.value,
            "cost_usd": self.cost_usd,
            "calls": self.calls,
            "tokens": {"input": self.tokens_in, "output": self.tokens_out},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServiceCostBreakdown":
        tokens = data.get("tokens") or {}
        return cls(
            service=data["service"],
            category=CostCategory(data.get("category", CostCategory.UNKNOWN.value)),
            cost_usd=float(data.get("cost_usd", 0.0)),
            calls=int(data.get("calls", 0)),
            tokens_in=tokens.get("input"),
            tokens_out=tokens.get("output"),
        )


@dataclass(frozen=True)
class CostSummary:
    """Cost of one stage, aggregated by service."""

    pipeline_id: str
    stage: str
    total_cost_usd: float
    breakdown: tuple[ServiceCostBreakdown, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_id": self.pipeline_id,
            "stage": self.stage,
            "total_cost_usd": self.total_cost_usd,
            "breakdown": [b.to_dict() for b in self.breakdown],
        }


def _add_tokens(current: int | None, extra: int | None) -> int | None:
    if extra is None:
        return current
    return (current or 0) + extra


class CostLedger:
    """
    Records priced calls for one stage of one pipeline run.

    Usage:
        ledger = CostLedger("2026-01-22", "script-gen", persistence)
        ledger.record_call("gemini-2.5-pro", {"input": 1200, "output": 3400}, 0.0231)
        summary = ledger.summary()
        await ledger.persist()
    """

    def __init__(
        self,
        pipeline_id: str,
        stage: str,
        persistence: Persistence | None = None,
        rules: tuple[CategoryRule, ...] = DEFAULT_CATEGORY_RULES,
    ):
        self.pipeline_id = validate_pipeline_id(pipeline_id)
        self.stage = stage
        self._persistence = persistence
        self._rules = rules
        self._entries: list[CostEntry] = []
        self._warned_unknown: set[str] = set()

    @property
    def entries(self) -> tuple[CostEntry, ...]:
        return tuple(self._entries)

    def categorize(self, service: str) -> CostCategory:
        category = categorize_service(service, self._rules)
        if category == CostCategory.UNKNOWN and service not in self._warned_unknown:
            self._warned_unknown.add(service)
            logger.warning(
                "Unknown cost category for service",
                pipeline_id=self.pipeline_id,
                stage=self.stage,
                service=service,
            )
        return category

    def record_call(
        self,
        service: str,
        tokens: TokenUsage | Mapping[str, int] | None = None,
        cost_usd: float = 0.0,
    ) -> CostEntry:
        """Append one priced call."""
        if not service:
            raise PipelineError.critical(
                ErrorCode.VALIDATION_ERROR,
                "Service name is required",
                stage=self.stage,
            )
        if not math.isfinite(cost_usd) or cost_usd < 0:
            raise PipelineError.critical(
                ErrorCode.VALIDATION_ERROR,
                f"Invalid cost {cost_usd!r} for service {service}",
                stage=self.stage,
                context={"service": service, "cost_usd": cost_usd},
            )

        usage = TokenUsage.coerce(tokens)
        entry = CostEntry(
            service=service,
            cost_usd=cost_usd,
            tokens_in=usage.input,
            tokens_out=usage.output,
        )
        self._entries.append(entry)
        self.categorize(service)

        logger.debug(
            "API call recorded",
            pipeline_id=self.pipeline_id,
            stage=self.stage,
            service=service,
            cost_usd=cost_usd,
        )
        return entry

    def breakdown(self) -> tuple[ServiceCostBreakdown, ...]:
        """Aggregate entries by service, in first-seen order."""
        totals: dict[str, dict[str, Any]] = {}
        for entry in self._entries:
            agg = totals.setdefault(entry.service, {
                "cost": Decimal("0"),
                "calls": 0,
                "tokens_in": None,
                "tokens_out": None,
            })
            agg["cost"] += Decimal(str(entry.cost_usd))
            agg["calls"] += 1
            agg["tokens_in"] = _add_tokens(agg["tokens_in"], entry.tokens_in)
            agg["tokens_out"] = _add_tokens(agg["tokens_out"], entry.tokens_out)

        return tuple(
            ServiceCostBreakdown(
                service=service,
                category=categorize_service(service, self._rules),
                cost_usd=round_cost(agg["cost"]),
                calls=agg["calls"],
                tokens_in=agg["tokens_in"],
                tokens_out=agg["tokens_out"],
            )
            for service, agg in totals.items()
        )

    def summary(self) -> CostSummary:
        """Aggregate all entries for this stage."""
        breakdown = self.breakdown()
        total = sum((Decimal(str(b.cost_usd)) for b in breakdown), Decimal("0"))
        return CostSummary(
            pipeline_id=self.pipeline_id,
            stage=self.stage,
            total_cost_usd=round_cost(total),
            breakdown=breakdown,
        )

    def category_totals(self) -> dict[str, float]:
        """Total cost per category for this stage, unknown included."""
        return _category_totals(self.breakdown())

    async def persist(self) -> dict[str, Any]:
        """
        Merge this stage into the pipeline cost document.

        Category and grand totals are recomputed from every stored stage,
        so re-running a stage replaces its contribution.
        """
        if self._persistence is None:
            raise PipelineError.critical(
                ErrorCode.CONFIG_ERROR,
                "CostLedger has no persistence backend",
                stage=self.stage,
            )

        summary = self.summary()
        collection = pipelines_collection(self.pipeline_id)
        doc = await self._persistence.get_document(collection, COST_DOC_ID) or {}
        stages: dict[str, Any] = dict(doc.get("stages", {}))
        stages[self.stage] = {
            "total": summary.total_cost_usd,
            "breakdown": [b.to_dict() for b in summary.breakdown],
        }

        all_breakdowns = [
            ServiceCostBreakdown.from_dict(item)
            for stage_doc in stages.values()
            for item in stage_doc.get("breakdown", [])
        ]
        categories = _category_totals(all_breakdowns)

        new_doc = {
            "pipeline_id": self.pipeline_id,
            **categories,
            "stages": stages,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._persistence.set_document(collection, COST_DOC_ID, new_doc)

        if categories[CostCategory.UNKNOWN.value] > 0:
            logger.warning(
                "Pipeline costs include uncategorized services",
                pipeline_id=self.pipeline_id,
                unknown_cost=categories[CostCategory.UNKNOWN.value],
            )

        logger.info(
            "Stage costs persisted",
            pipeline_id=self.pipeline_id,
            stage=self.stage,
            stage_total=summary.total_cost_usd,
            pipeline_total=new_doc["total"],
        )
        return new_doc

    @staticmethod
    async def get_pipeline_costs(
        persistence: Persistence,
        pipeline_id: str,
    ) -> dict[str, Any] | None:
        """Load the stored cost document for a pipeline run."""
        validate_pipeline_id(pipeline_id)
        return await persistence.get_document(pipelines_collection(pipeline_id), COST_DOC_ID)

    @staticmethod
    async def get_pipeline_cost(persistence: Persistence, pipeline_id: str) -> float:
        """Grand total stored for a pipeline run, or 0.0 when nothing is stored."""
        doc = await CostLedger.get_pipeline_costs(persistence, pipeline_id)
        if not doc:
            return 0.0
        return float(doc.get("total", 0.0))


def _category_totals(breakdowns) -> dict[str, float]:
    sums = {category.value: Decimal("0") for category in CostCategory}
    for item in breakdowns:
        sums[item.category.value] += Decimal(str(item.cost_usd))
    totals = {name: round_cost(value) for name, value in sums.items()}
    totals["total"] = round_cost(sum(sums.values(), Decimal("0")))
    return totals
