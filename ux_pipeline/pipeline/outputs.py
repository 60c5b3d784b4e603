"""Stage outputs as a tagged union, and the immutable StageResult audit entry."""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from ux_pipeline.pipeline.metadata import CompressedMetadata


class _Output(BaseModel):
    model_config = ConfigDict(frozen=True)


class MetadataOutput(_Output):
    """Compressed vision metadata. degraded=True when defaults replaced a failed vision call."""

    kind: Literal["metadata"] = "metadata"
    metadata: CompressedMetadata
    degraded: bool = False
    reason: str | None = None


class Stage1Output(_Output):
    """Vision-informed UX analysis: layoutAnalysis, usabilityFindings, accessibilityReview."""

    kind: Literal["ux_analysis"] = "ux_analysis"
    payload: dict[str, Any]


class FinalOutput(_Output):
    """Synthesis output: visualAnnotations, suggestions, summary."""

    kind: Literal["synthesis"] = "synthesis"
    payload: dict[str, Any]


class ErrorMarker(_Output):
    kind: Literal["error"] = "error"
    error_type: str
    message: str


class FallbackMarker(_Output):
    """Budget shortfall under the degrade policy: remaining stages were skipped."""

    kind: Literal["fallback"] = "fallback"
    reason: str
    skipped_stages: tuple[str, ...] = ()


StageOutput = Annotated[
    Union[MetadataOutput, Stage1Output, FinalOutput, ErrorMarker, FallbackMarker],
    Field(discriminator="kind"),
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageResult(BaseModel):
    """One entry of a run's append-only audit trail. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    stage_name: str
    model_id: str
    success: bool
    timestamp: datetime = Field(default_factory=_utcnow)
    token_usage: int | None = None
    data: StageOutput
    compressed: bool = False
    retries: int = 0

    def audit_entry(self) -> dict[str, Any]:
        """JSON-safe copy for AnalysisRecord.metadata.stages."""
        return {
            "stage": self.stage_name,
            "model": self.model_id,
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
            "tokenUsage": self.token_usage,
            "compressed": self.compressed,
            "retries": self.retries,
            "output": self.data.model_dump(mode="json", by_alias=True),
        }
