"""Typed pipeline failures. Each names the failing stage and carries the partial audit trail."""

from typing import Sequence

from ux_pipeline.pipeline.outputs import StageResult


class PipelineError(Exception):
    """Base for all pipeline failures."""

    def __init__(self, stage_name: str, reason: str, history: Sequence[StageResult] = ()) -> None:
        self.stage_name = stage_name
        self.reason = reason
        self.history: tuple[StageResult, ...] = tuple(history)
        super().__init__(f"{stage_name}: {reason}")

    @property
    def completed_stages(self) -> list[str]:
        """Names of stages that finished successfully before the failure."""
        return [r.stage_name for r in self.history if r.success]


def _describe(cause: BaseException) -> str:
    text = str(cause).strip()
    return f"{type(cause).__name__}: {text}" if text else type(cause).__name__


class MetadataExtractionFailed(PipelineError):
    """Vision call failed or returned unusable data."""

    def __init__(self, stage_name: str, cause: BaseException, history: Sequence[StageResult] = ()) -> None:
        self.cause = cause
        super().__init__(stage_name, f"metadata extraction failed ({_describe(cause)})", history)


class StageExecutionFailed(PipelineError):
    """External model call errored or returned unparsable content."""

    def __init__(self, stage_name: str, cause: BaseException, history: Sequence[StageResult] = ()) -> None:
        self.cause = cause
        super().__init__(stage_name, f"stage execution failed ({_describe(cause)})", history)


class TokenBudgetExceeded(PipelineError):
    """Not enough budget left before a stage would run; the stage was not invoked."""

    def __init__(
        self,
        stage_name: str,
        remaining: int,
        required: int,
        history: Sequence[StageResult] = (),
        detail: str | None = None,
    ) -> None:
        self.remaining = remaining
        self.required = required
        reason = detail or f"token budget exceeded ({remaining} remaining, {required} required)"
        super().__init__(stage_name, reason, history)


class ConsolidationFailed(PipelineError):
    """The primary stage output was unusable; no safe record could be produced."""

    STAGE_NAME = "consolidation"

    def __init__(self, reason: str, history: Sequence[StageResult] = ()) -> None:
        super().__init__(self.STAGE_NAME, reason, history)


class PipelineCancelled(PipelineError):
    """Caller set the cancellation event; raised before the named stage started."""

    def __init__(self, stage_name: str, history: Sequence[StageResult] = ()) -> None:
        super().__init__(stage_name, "run cancelled before stage started", history)


class PersistenceFailed(PipelineError):
    """The final upsert of the analysis record failed."""

    STAGE_NAME = "persistence"

    def __init__(self, image_id: str, cause: BaseException, history: Sequence[StageResult] = ()) -> None:
        self.image_id = image_id
        self.cause = cause
        super().__init__(self.STAGE_NAME, f"could not store analysis for {image_id} ({_describe(cause)})", history)
