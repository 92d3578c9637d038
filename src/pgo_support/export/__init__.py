"""Export: the collection steps and the pipeline that runs them into one archive."""

from pgo_support.export.context import ExportOptions, RunContext
from pgo_support.export.orchestrator import (
    CollectionStep,
    ExportPipeline,
    ExportResult,
    PipelineState,
    default_steps,
    run_export,
)

__all__ = [
    "CollectionStep",
    "ExportOptions",
    "ExportPipeline",
    "ExportResult",
    "PipelineState",
    "RunContext",
    "default_steps",
    "run_export",
]
