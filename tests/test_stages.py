"""Tests for stage helpers: payload parsing, prompt builders, default stage wiring."""

import pytest

from ux_pipeline.ai.vision_base import MockVisionClient
from ux_pipeline.pipeline.budget import BudgetGroup
from ux_pipeline.pipeline.metadata import CompressedMetadata, MetadataExtractor
from ux_pipeline.pipeline.prompts import build_synthesis_prompt, build_ux_analysis_prompt, summarize_context
from ux_pipeline.pipeline.stages import (
    SynthesisStage,
    VisionMetadataStage,
    build_default_stages,
    parse_analysis_payload,
)
from tests.conftest import SYNTHESIS_MODEL, UX_MODEL, ScriptedModel, ux_payload

pytestmark = [pytest.mark.fast]


def test_parse_accepts_dicts_and_json_strings():
    assert parse_analysis_payload({"a": 1}) == {"a": 1}
    assert parse_analysis_payload('{"a": 1}') == {"a": 1}
    assert parse_analysis_payload('```\n{"a": 1}\n```') == {"a": 1}


@pytest.mark.parametrize("value", [None, 42, "[1, 2]", "not json", ["a"]])
def test_parse_rejects_non_objects(value):
    with pytest.raises(ValueError):
        parse_analysis_payload(value)


def test_summarize_context_truncates_with_ellipsis():
    assert summarize_context("  short  ", 10) == "short"
    assert summarize_context("x" * 12, 10) == "x" * 10 + "..."


def test_ux_prompt_includes_metadata_and_trimmed_context():
    prompt = build_ux_analysis_prompt(CompressedMetadata(elements="Button, Card"), "y" * 400)
    assert "Visual elements: Button, Card" in prompt
    assert "User focus: " + "y" * 300 + "..." in prompt


def test_synthesis_prompt_tolerates_partial_stage1_output():
    prompt = build_synthesis_prompt(CompressedMetadata(), {"layoutAnalysis": "grid"}, "")
    assert "Layout: standard with standard hierarchy" in prompt
    assert "User focus" not in prompt


def test_synthesis_stage_reserves_tokens():
    stage = SynthesisStage(ScriptedModel(SYNTHESIS_MODEL))
    assert stage.max_tokens(13800) == 2000
    assert stage.max_tokens(2300) == 1800


def test_vision_degrade_output_uses_defaults():
    output = VisionMetadataStage.degrade(TimeoutError())
    assert output.degraded is True
    assert output.reason == "TimeoutError"
    assert output.metadata == CompressedMetadata()


def test_default_stage_wiring():
    stages = build_default_stages(
        MetadataExtractor(MockVisionClient()),
        ScriptedModel(UX_MODEL, analysis=ux_payload()),
        UX_MODEL,
        ScriptedModel(SYNTHESIS_MODEL),
        SYNTHESIS_MODEL,
    )
    assert [(s.name, s.budget_group, s.min_tokens, s.percent) for s in stages] == [
        ("vision_metadata", BudgetGroup.stage1, 0, 20),
        ("ux_analysis", BudgetGroup.stage2, 1500, 50),
        ("synthesis", BudgetGroup.stage3, 3000, 80),
    ]
    assert stages[0].metered_model_id == UX_MODEL
    assert stages[0].fallback is not None
    assert stages[1].fallback is None
