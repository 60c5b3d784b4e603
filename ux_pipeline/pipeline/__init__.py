"""
Staged analysis pipeline: vision metadata, model stages, consolidation.

AnalysisPipeline lives in ux_pipeline.pipeline.runner; import it from there.
"""

from ux_pipeline.pipeline.budget import BudgetGroup, TokenBudget, TokenBudgetTracker
from ux_pipeline.pipeline.errors import (
    ConsolidationFailed,
    MetadataExtractionFailed,
    PersistenceFailed,
    PipelineCancelled,
    PipelineError,
    StageExecutionFailed,
    TokenBudgetExceeded,
)
from ux_pipeline.pipeline.policy import FallbackPolicy
from ux_pipeline.pipeline.progress import PipelineProgress, ProgressReporter
from ux_pipeline.pipeline.recovery import RetryPolicy

__all__ = [
    "BudgetGroup",
    "ConsolidationFailed",
    "FallbackPolicy",
    "MetadataExtractionFailed",
    "PersistenceFailed",
    "PipelineCancelled",
    "PipelineError",
    "PipelineProgress",
    "ProgressReporter",
    "RetryPolicy",
    "StageExecutionFailed",
    "TokenBudget",
    "TokenBudgetExceeded",
    "TokenBudgetTracker",
]
