"""Tests for ConsolidationSafety: defaults with warnings, never fabricated scores."""

import pytest

from ux_pipeline.pipeline.consolidation import ConsolidationSafety
from ux_pipeline.pipeline.errors import ConsolidationFailed
from ux_pipeline.pipeline.metadata import CompressedMetadata
from ux_pipeline.pipeline.outputs import (
    ErrorMarker,
    FallbackMarker,
    FinalOutput,
    MetadataOutput,
    Stage1Output,
    StageResult,
)
from ux_pipeline.pipeline.policy import FallbackPolicy
from tests.conftest import SYNTHESIS_MODEL, UX_MODEL, synthesis_payload, ux_payload

pytestmark = [pytest.mark.fast]


def _metadata(degraded: bool = False) -> StageResult:
    return StageResult(
        stage_name="vision_metadata",
        model_id="mock-vision",
        success=not degraded,
        token_usage=None if degraded else 0,
        data=MetadataOutput(metadata=CompressedMetadata(), degraded=degraded, reason="timeout" if degraded else None),
        compressed=True,
    )


def _ux(payload=None) -> StageResult:
    return StageResult(
        stage_name="ux_analysis",
        model_id=UX_MODEL,
        success=True,
        token_usage=1200,
        data=Stage1Output(payload=ux_payload() if payload is None else payload),
    )


def _final(payload) -> StageResult:
    return StageResult(
        stage_name="synthesis",
        model_id=SYNTHESIS_MODEL,
        success=True,
        token_usage=1800,
        data=FinalOutput(payload=payload),
    )


def _history(payload):
    return [_metadata(), _ux(), _final(payload)]


def test_well_formed_final_output_produces_complete_record():
    result = ConsolidationSafety().consolidate(_history(synthesis_payload()), image_id="img-1")
    record = result.record
    assert result.warnings == []
    assert result.fallbacks_applied == []
    assert record.image_id == "img-1"
    assert record.summary.overall_score == 72
    assert record.summary.category_scores.complete
    assert record.summary.category_scores.accessibility == 60
    assert record.visual_annotations[0].title == "Low contrast"
    assert record.suggestions[0].action_items == ["Use #333 for body text"]
    assert result.used_stages == ["vision_metadata", "ux_analysis", "synthesis"]


def test_suggestions_not_an_array_defaults_to_empty_list():
    payload = synthesis_payload()
    payload["suggestions"] = {"id": "s1"}
    result = ConsolidationSafety().consolidate(_history(payload))
    assert result.record.suggestions == []
    assert "suggestions: invalid shape, defaulted to []" in result.warnings
    assert "suggestions: invalid shape, defaulted to []" in result.fallbacks_applied
    assert result.record.summary.overall_score == 72


def test_missing_annotations_default_with_warning():
    payload = synthesis_payload()
    del payload["visualAnnotations"]
    result = ConsolidationSafety().consolidate(_history(payload))
    assert result.record.visual_annotations == []
    assert "visualAnnotations: missing, defaulted to []" in result.warnings


def test_invalid_items_are_dropped_individually():
    payload = synthesis_payload()
    payload["visualAnnotations"].append("not an object")
    payload["visualAnnotations"].append({"id": "a3", "x": "left", "title": "Bad coordinates"})
    result = ConsolidationSafety().consolidate(_history(payload))
    assert [a.id for a in result.record.visual_annotations] == ["a1"]
    assert "visualAnnotations[1]: not an object, dropped" in result.warnings
    assert any(w.startswith("visualAnnotations[2]:") for w in result.warnings)


@pytest.mark.parametrize(
    "summary",
    [
        None,
        "great",
        {"categoryScores": {"usability": 70, "accessibility": 60, "visual": 80, "content": 78}},
        {"overallScore": "seventy", "categoryScores": {"usability": 70, "accessibility": 60, "visual": 80, "content": 78}},
        {"overallScore": True, "categoryScores": {"usability": 70, "accessibility": 60, "visual": 80, "content": 78}},
        {"overallScore": 70},
        {"overallScore": 70, "categoryScores": {"usability": 70, "accessibility": 60, "visual": 80}},
    ],
)
def test_malformed_summary_raises_instead_of_fabricating_scores(summary):
    payload = synthesis_payload()
    payload["summary"] = summary
    with pytest.raises(ConsolidationFailed) as exc_info:
        ConsolidationSafety().consolidate(_history(payload))
    assert exc_info.value.stage_name == "consolidation"
    assert "synthesis" in exc_info.value.reason
    assert len(exc_info.value.history) == 3


def test_empty_final_output_raises():
    with pytest.raises(ConsolidationFailed, match="empty"):
        ConsolidationSafety().consolidate(_history({}))


def test_out_of_range_scores_are_clamped_with_warning():
    payload = synthesis_payload()
    payload["summary"]["overallScore"] = 140
    payload["summary"]["categoryScores"]["visual"] = -5
    result = ConsolidationSafety().consolidate(_history(payload))
    assert result.record.summary.overall_score == 100
    assert result.record.summary.category_scores.visual == 0
    assert "summary.overallScore: 140 out of range, clamped to 100" in result.fallbacks_applied


def test_non_string_key_issues_are_dropped():
    payload = synthesis_payload()
    payload["summary"]["keyIssues"] = ["Low contrast", 42]
    payload["summary"]["strengths"] = "many"
    result = ConsolidationSafety().consolidate(_history(payload))
    assert result.record.summary.key_issues == ["Low contrast"]
    assert result.record.summary.strengths == []
    assert "summary.strengths: invalid shape, defaulted to []" in result.warnings


def test_empty_history_raises():
    with pytest.raises(ConsolidationFailed, match="no stages"):
        ConsolidationSafety().consolidate([])


def test_history_without_model_output_raises():
    with pytest.raises(ConsolidationFailed, match="no successful analysis stage"):
        ConsolidationSafety().consolidate([_metadata()])


def test_stage1_primary_builds_reduced_record_without_scores():
    """A degraded run that stopped after UX analysis gives annotations and suggestions, no scores."""
    history = [
        _metadata(),
        _ux(),
        StageResult(
            stage_name="synthesis",
            model_id=SYNTHESIS_MODEL,
            success=False,
            data=FallbackMarker(reason="token budget exceeded", skipped_stages=("synthesis",)),
        ),
    ]
    result = ConsolidationSafety(FallbackPolicy.degrade).consolidate(history, image_id="img-2")
    record = result.record
    assert record.summary.overall_score is None
    assert record.summary.category_scores is None
    assert [a.title for a in record.visual_annotations] == ["contrast", "spacing"]
    assert record.visual_annotations[0].severity == "high"
    assert record.suggestions[0].description == "Add alt text to hero image"
    assert record.summary.key_issues == ["Low contrast body text", "Cramped form fields"]
    assert record.metadata.degraded is True
    assert record.metadata.primary_stage == "ux_analysis"
    assert record.metadata.fallback_policy == "degrade"
    assert "synthesis: token budget exceeded; skipped synthesis" in result.fallbacks_applied
    assert "summary: derived from ux_analysis output without scores" in result.fallbacks_applied


def test_stage1_primary_without_findings_raises():
    with pytest.raises(ConsolidationFailed, match="neither usabilityFindings nor accessibilityReview"):
        ConsolidationSafety().consolidate([_metadata(), _ux(payload={"layoutAnalysis": {}})])


def test_degraded_vision_is_listed_as_fallback():
    history = [_metadata(degraded=True), _ux(), _final(synthesis_payload())]
    result = ConsolidationSafety().consolidate(history)
    assert result.fallbacks_applied == ["vision_metadata: vision metadata unavailable, defaults used (timeout)"]
    assert result.record.metadata.degraded is True
    assert result.used_stages == ["ux_analysis", "synthesis"]


def test_error_markers_are_reported_as_warnings():
    history = _history(synthesis_payload()) + [
        StageResult(
            stage_name="extra",
            model_id="pipeline",
            success=False,
            data=ErrorMarker(error_type="StageExecutionFailed", message="boom"),
        )
    ]
    result = ConsolidationSafety().consolidate(history)
    assert "extra: StageExecutionFailed: boom" in result.warnings


def test_audit_metadata_copies_every_stage():
    result = ConsolidationSafety(pipeline_label="vision_metadata -> ux_analysis -> synthesis").consolidate(
        _history(synthesis_payload())
    )
    meta = result.record.metadata
    assert meta.pipeline == "vision_metadata -> ux_analysis -> synthesis"
    assert meta.fallback_policy == "hard_fail"
    assert meta.total_token_usage == 3000
    assert meta.models_used == ["mock-vision", UX_MODEL, SYNTHESIS_MODEL]
    assert [s["stage"] for s in meta.stages] == ["vision_metadata", "ux_analysis", "synthesis"]
    assert meta.stages[0]["compressed"] is True
    assert meta.stages[2]["output"]["kind"] == "synthesis"


def test_storage_payload_uses_camel_case_keys():
    payload = ConsolidationSafety().consolidate(_history(synthesis_payload())).record.storage_payload()
    assert set(payload) == {"visualAnnotations", "suggestions", "summary", "metadata"}
    assert payload["summary"]["overallScore"] == 72
    assert payload["summary"]["categoryScores"]["usability"] == 70
    assert payload["suggestions"][0]["actionItems"] == ["Use #333 for body text"]
    assert payload["metadata"]["totalTokenUsage"] == 3000


def test_missing_key_issues_and_strengths_default_with_warning():
    payload = synthesis_payload()
    del payload["summary"]["keyIssues"]
    del payload["summary"]["strengths"]
    result = ConsolidationSafety().consolidate(_history(payload))
    summary = result.record.summary
    assert summary.key_issues == []
    assert summary.strengths == []
    for message in ("summary.keyIssues: missing, defaulted to []", "summary.strengths: missing, defaulted to []"):
        assert message in result.warnings
        assert message in result.fallbacks_applied
    assert summary.overall_score == 72


def test_stage1_primary_missing_lists_default_with_warning():
    payload = {"usabilityFindings": {}, "accessibilityReview": {"concerns": []}}
    result = ConsolidationSafety().consolidate([_metadata(), _ux(payload=payload)])
    record = result.record
    assert record.visual_annotations == []
    assert record.suggestions == []
    assert record.summary.strengths == []
    for message in (
        "usabilityFindings.issues: missing, defaulted to []",
        "usabilityFindings.strengths: missing, defaulted to []",
        "accessibilityReview.recommendations: missing, defaulted to []",
    ):
        assert message in result.warnings
        assert message in result.fallbacks_applied


def test_stage1_issues_of_wrong_shape_default_with_warning():
    payload = ux_payload()
    payload["usabilityFindings"]["issues"] = "none found"
    result = ConsolidationSafety().consolidate([_metadata(), _ux(payload=payload)])
    assert result.record.visual_annotations == []
    assert "usabilityFindings.issues: invalid shape, defaulted to []" in result.fallbacks_applied


def test_quality_metrics_for_complete_run():
    quality = ConsolidationSafety().consolidate(_history(synthesis_payload())).record.metadata.quality
    assert (quality.completeness, quality.data_richness, quality.analysis_depth) == (100, 100, 80)
    assert quality.overall_quality == 93


def test_quality_metrics_for_degraded_run():
    history = [
        _metadata(),
        _ux(),
        StageResult(
            stage_name="synthesis",
            model_id=SYNTHESIS_MODEL,
            success=False,
            data=FallbackMarker(reason="token budget exceeded", skipped_stages=("synthesis",)),
        ),
    ]
    result = ConsolidationSafety(FallbackPolicy.degrade).consolidate(history)
    quality = result.record.metadata.quality
    assert (quality.completeness, quality.data_richness, quality.analysis_depth) == (67, 70, 80)
    assert quality.overall_quality == 72
    payload = result.record.storage_payload()
    assert payload["metadata"]["quality"]["dataRichness"] == 70
