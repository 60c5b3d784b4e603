"""Fold a run's stage history into one AnalysisRecord without fabricating anything."""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from pydantic import BaseModel, ValidationError

from ux_pipeline.pipeline.errors import ConsolidationFailed
from ux_pipeline.pipeline.outputs import (
    ErrorMarker,
    FallbackMarker,
    FinalOutput,
    MetadataOutput,
    Stage1Output,
    StageResult,
)
from ux_pipeline.pipeline.policy import FallbackPolicy
from ux_pipeline.pipeline.record import (
    CATEGORY_NAMES,
    AnalysisMetadata,
    AnalysisRecord,
    CategoryScores,
    QualityMetrics,
    Suggestion,
    Summary,
    VisualAnnotation,
)

_log = logging.getLogger(__name__)

SCORE_MIN = 0
SCORE_MAX = 100

# Data richness contributed by each kind of successful stage output; sums to 100.
RICHNESS_WEIGHTS = {MetadataOutput: 30, Stage1Output: 40, FinalOutput: 30}


@dataclass
class ConsolidationResult:
    record: AnalysisRecord
    warnings: list[str] = field(default_factory=list)
    fallbacks_applied: list[str] = field(default_factory=list)
    used_stages: list[str] = field(default_factory=list)


@dataclass
class _Notes:
    warnings: list[str] = field(default_factory=list)
    fallbacks: list[str] = field(default_factory=list)

    def default(self, message: str) -> None:
        self.warnings.append(message)
        self.fallbacks.append(message)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _model_list(
    payload: dict[str, Any],
    key: str,
    model: type[BaseModel],
    notes: _Notes,
) -> list[Any]:
    """Validate payload[key] as a list of model items; default to [] on a missing or wrong-shaped field."""
    if key not in payload or payload[key] is None:
        notes.default(f"{key}: missing, defaulted to []")
        return []
    value = payload[key]
    if not isinstance(value, list):
        notes.default(f"{key}: invalid shape, defaulted to []")
        return []
    items = []
    for index, raw in enumerate(value):
        if not isinstance(raw, dict):
            notes.warnings.append(f"{key}[{index}]: not an object, dropped")
            continue
        try:
            items.append(model.model_validate(raw))
        except ValidationError as e:
            notes.warnings.append(f"{key}[{index}]: {e.error_count()} invalid field(s), dropped")
    return items


def _string_list(source: dict[str, Any], key: str, label: str, notes: _Notes) -> list[str]:
    value = source.get(key)
    if value is None:
        notes.default(f"{label}: missing, defaulted to []")
        return []
    if not isinstance(value, list):
        notes.default(f"{label}: invalid shape, defaulted to []")
        return []
    strings = [v for v in value if isinstance(v, str)]
    if len(strings) != len(value):
        notes.warnings.append(f"{label}: {len(value) - len(strings)} non-string item(s) dropped")
    return strings


def _score(value: Any, label: str, notes: _Notes) -> int | float | None:
    """Return a score within [0, 100], clamping out-of-range numbers. None when not numeric."""
    if not _is_number(value):
        return None
    if value < SCORE_MIN or value > SCORE_MAX:
        clamped = min(max(value, SCORE_MIN), SCORE_MAX)
        notes.default(f"{label}: {value} out of range, clamped to {clamped}")
        return clamped
    return value


def quality_metrics(history: Sequence[StageResult]) -> QualityMetrics:
    """Completeness, data richness and analysis depth of a run, from its stage history alone."""
    successful = [r for r in history if r.success]
    completeness = len(successful) / len(history) * 100 if history else 0
    richness = sum(RICHNESS_WEIGHTS.get(type(r.data), 0) for r in successful)
    if len(successful) >= 2:
        depth = 80
    elif successful:
        depth = 50
    else:
        depth = 20
    return QualityMetrics(
        completeness=round(completeness),
        data_richness=richness,
        analysis_depth=depth,
        overall_quality=round((completeness + richness + depth) / 3),
    )


class ConsolidationSafety:
    """
    Turns the ordered StageResult history of one run into an AnalysisRecord.

    The last successful model stage (UX analysis or synthesis) is the primary source.
    Optional-field defects never raise: they are defaulted and reported in warnings and
    fallbacks_applied. A primary stage with no usable structured output raises
    ConsolidationFailed; scores are never invented.
    """

    def __init__(self, policy: FallbackPolicy = FallbackPolicy.hard_fail, pipeline_label: str = "") -> None:
        self._policy = policy
        self._pipeline_label = pipeline_label

    def consolidate(self, history: Sequence[StageResult], image_id: str | None = None) -> ConsolidationResult:
        history = tuple(history)
        if not history:
            raise ConsolidationFailed("no stages provided for consolidation", history)

        notes = _Notes()
        primary: StageResult | None = None
        for result in history:
            data = result.data
            if isinstance(data, MetadataOutput):
                if data.degraded:
                    notes.default(f"{result.stage_name}: vision metadata unavailable, defaults used ({data.reason})")
            elif isinstance(data, (Stage1Output, FinalOutput)):
                if result.success:
                    primary = result
            elif isinstance(data, FallbackMarker):
                notes.default(
                    f"{result.stage_name}: {data.reason}; skipped {', '.join(data.skipped_stages) or 'no stages'}"
                )
            elif isinstance(data, ErrorMarker):
                notes.warnings.append(f"{result.stage_name}: {data.error_type}: {data.message}")
            else:
                raise TypeError(f"Unhandled stage output type: {type(data).__name__}")

        if primary is None:
            raise ConsolidationFailed("no successful analysis stage produced output", history)

        if isinstance(primary.data, FinalOutput):
            annotations, suggestions, summary = self._from_final(primary, notes, history)
        else:
            annotations, suggestions, summary = self._from_stage1(primary, notes, history)

        used_stages = [r.stage_name for r in history if r.success]
        metadata = AnalysisMetadata(
            pipeline=self._pipeline_label or " -> ".join(r.stage_name for r in history),
            fallback_policy=self._policy.value,
            degraded=any(isinstance(r.data, FallbackMarker) or getattr(r.data, "degraded", False) for r in history),
            primary_stage=primary.stage_name,
            models_used=list(dict.fromkeys(r.model_id for r in history if r.success)),
            total_token_usage=sum(r.token_usage or 0 for r in history),
            stages=[r.audit_entry() for r in history],
            warnings=list(notes.warnings),
            fallbacks_applied=list(notes.fallbacks),
            quality=quality_metrics(history),
        )
        record = AnalysisRecord(
            image_id=image_id,
            visual_annotations=annotations,
            suggestions=suggestions,
            summary=summary,
            metadata=metadata,
        )
        if notes.warnings:
            _log.debug("Consolidation for %s produced %s warning(s)", image_id, len(notes.warnings))
        return ConsolidationResult(
            record=record,
            warnings=notes.warnings,
            fallbacks_applied=notes.fallbacks,
            used_stages=used_stages,
        )

    def _from_final(
        self,
        primary: StageResult,
        notes: _Notes,
        history: tuple[StageResult, ...],
    ) -> tuple[list[VisualAnnotation], list[Suggestion], Summary]:
        payload = primary.data.payload
        if not payload:
            raise ConsolidationFailed(f"{primary.stage_name} output is empty", history)

        raw_summary = payload.get("summary")
        if not isinstance(raw_summary, dict):
            raise ConsolidationFailed(f"{primary.stage_name} output has no summary object", history)
        overall = _score(raw_summary.get("overallScore"), "summary.overallScore", notes)
        if overall is None:
            raise ConsolidationFailed(
                f"{primary.stage_name} summary.overallScore is missing or not a number", history
            )

        annotations = _model_list(payload, "visualAnnotations", VisualAnnotation, notes)
        suggestions = _model_list(payload, "suggestions", Suggestion, notes)

        raw_categories = raw_summary.get("categoryScores")
        if not isinstance(raw_categories, dict):
            raise ConsolidationFailed(f"{primary.stage_name} summary.categoryScores is missing", history)
        scores = {}
        for name in CATEGORY_NAMES:
            scores[name] = _score(raw_categories.get(name), f"summary.categoryScores.{name}", notes)
            if scores[name] is None:
                raise ConsolidationFailed(
                    f"{primary.stage_name} summary.categoryScores.{name} is missing or not a number", history
                )
        category_scores = CategoryScores(**scores)

        summary = Summary(
            overall_score=overall,
            category_scores=category_scores,
            key_issues=_string_list(raw_summary, "keyIssues", "summary.keyIssues", notes),
            strengths=_string_list(raw_summary, "strengths", "summary.strengths", notes),
        )
        return annotations, suggestions, summary

    def _from_stage1(
        self,
        primary: StageResult,
        notes: _Notes,
        history: tuple[StageResult, ...],
    ) -> tuple[list[VisualAnnotation], list[Suggestion], Summary]:
        """Reduced-fidelity record built only from the UX analysis output. No scores."""
        payload = primary.data.payload
        findings = payload.get("usabilityFindings")
        review = payload.get("accessibilityReview")
        if not isinstance(findings, dict) and not isinstance(review, dict):
            raise ConsolidationFailed(
                f"{primary.stage_name} output has neither usabilityFindings nor accessibilityReview", history
            )
        findings = findings if isinstance(findings, dict) else {}
        review = review if isinstance(review, dict) else {}

        issues = findings.get("issues")
        if issues is None:
            notes.default("usabilityFindings.issues: missing, defaulted to []")
            issues = []
        elif not isinstance(issues, list):
            notes.default("usabilityFindings.issues: invalid shape, defaulted to []")
            issues = []
        annotations = []
        key_issues = []
        for index, issue in enumerate(issues):
            if not isinstance(issue, dict):
                notes.warnings.append(f"usabilityFindings.issues[{index}]: not an object, dropped")
                continue
            description = issue.get("description") if isinstance(issue.get("description"), str) else ""
            annotations.append(
                VisualAnnotation(
                    id=f"issue_{index}",
                    x=25 + index * 15,
                    y=20 + index * 10,
                    type="issue",
                    title=issue.get("type") if isinstance(issue.get("type"), str) else "Usability issue",
                    description=description or "Requires review",
                    severity=issue.get("severity") if isinstance(issue.get("severity"), str) else "medium",
                )
            )
            if description:
                key_issues.append(description)

        recommendations = _string_list(
            review, "recommendations", "accessibilityReview.recommendations", notes
        )
        suggestions = [
            Suggestion(
                id=f"suggestion_{index}",
                category="accessibility",
                title="Accessibility improvement",
                description=rec,
                impact="medium",
                effort="low",
                action_items=[rec],
            )
            for index, rec in enumerate(recommendations)
        ]
        notes.default(f"summary: derived from {primary.stage_name} output without scores")
        summary = Summary(
            overall_score=None,
            category_scores=None,
            key_issues=key_issues,
            strengths=_string_list(findings, "strengths", "usabilityFindings.strengths", notes),
        )
        return annotations, suggestions, summary
