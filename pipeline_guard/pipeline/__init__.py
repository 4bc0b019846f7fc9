"""Stage execution."""

from pipeline_guard.pipeline.executor import (
    StageExecutor,
    StageInput,
    UnitResult,
    gather_bounded,
    resolve_provider_info,
)

__all__ = [
    "StageExecutor",
    "StageInput",
    "UnitResult",
    "gather_bounded",
    "resolve_provider_info",
]
