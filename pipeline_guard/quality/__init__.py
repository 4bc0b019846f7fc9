"""
Quality Module.

Provides quality control for pipeline output:
- Per-stage quality gates
- Pre-publish decision engine with human review routing
"""

from pipeline_guard.quality.gates import (
    QualityGate,
    QualityGateRegistry,
    QualityGateResult,
    default_gates,
    read_metric,
)
from pipeline_guard.quality.pre_publish import (
    IssueCode,
    IssueSeverity,
    PipelineQualityContext,
    PrePublishDecisionEngine,
    PublishDecision,
    PublishGateResult,
    QualityDecision,
    QualityIssue,
    QualityMetricsSummary,
    default_detectors,
    determine_decision,
)

__all__ = [
    # Gates
    "QualityGate",
    "QualityGateRegistry",
    "QualityGateResult",
    "default_gates",
    "read_metric",
    # Pre-publish
    "IssueCode",
    "IssueSeverity",
    "PipelineQualityContext",
    "PrePublishDecisionEngine",
    "PublishDecision",
    "PublishGateResult",
    "QualityDecision",
    "QualityIssue",
    "QualityMetricsSummary",
    "default_detectors",
    "determine_decision",
]
