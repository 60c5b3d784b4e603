"""The consolidated AnalysisRecord and its parts. Serialized with camelCase keys."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CATEGORY_NAMES = ("usability", "accessibility", "visual", "content")


class _RecordModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VisualAnnotation(_RecordModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str | int = ""
    x: float = 0
    y: float = 0
    type: str = "issue"
    title: str = ""
    description: str = ""
    severity: str = "medium"


class Suggestion(_RecordModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str | int = ""
    category: str = "general"
    title: str = ""
    description: str = ""
    impact: str = "medium"
    effort: str = "medium"
    action_items: list[str] = Field(default_factory=list)


class CategoryScores(_RecordModel):
    """Scores per category, each in [0, 100]."""

    usability: int | float | None = None
    accessibility: int | float | None = None
    visual: int | float | None = None
    content: int | float | None = None

    @property
    def complete(self) -> bool:
        return all(getattr(self, name) is not None for name in CATEGORY_NAMES)


class Summary(_RecordModel):
    """Scores are None on degraded records, which never carry invented numbers."""

    overall_score: int | float | None = None
    category_scores: CategoryScores | None = None
    key_issues: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)


class QualityMetrics(_RecordModel):
    """
    How much of the pipeline contributed to the record, each 0..100. Derived from the stage
    history only; unrelated to the UX scores in Summary.
    """

    completeness: int = 0
    data_richness: int = 0
    analysis_depth: int = 0
    overall_quality: int = 0


class AnalysisMetadata(_RecordModel):
    """Audit copy of the run. No correctness constraint beyond faithfulness."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    pipeline: str = ""
    fallback_policy: str = ""
    degraded: bool = False
    primary_stage: str | None = None
    models_used: list[str] = Field(default_factory=list)
    total_token_usage: int = 0
    stages: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    fallbacks_applied: list[str] = Field(default_factory=list)
    quality: QualityMetrics = Field(default_factory=QualityMetrics)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisRecord(_RecordModel):
    """Final artifact of one run. Persisted once, immutable thereafter."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    image_id: str | None = None
    visual_annotations: list[VisualAnnotation] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)
    metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)
    created_at: datetime = Field(default_factory=_utcnow)

    def storage_payload(self) -> dict[str, Any]:
        """JSON-safe {visualAnnotations, suggestions, summary, metadata} for the persistence upsert."""
        data = self.model_dump(mode="json", by_alias=True)
        return {
            "visualAnnotations": data["visualAnnotations"],
            "suggestions": data["suggestions"],
            "summary": data["summary"],
            "metadata": data["metadata"],
        }
