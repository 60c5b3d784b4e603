"""Minimal prompt builders for the model stages. Wording is not part of the pipeline contract."""

import json
from typing import Any

from ux_pipeline.pipeline.metadata import CompressedMetadata

UX_CONTEXT_CHARS = 300
SYNTHESIS_CONTEXT_CHARS = 200
SYNTHESIS_EXCERPT_CHARS = 200


def summarize_context(user_context: str, limit: int) -> str:
    """Trim user context to limit characters, marking truncation with '...'."""
    user_context = user_context.strip()
    if len(user_context) <= limit:
        return user_context
    return user_context[:limit] + "..."


def build_ux_analysis_prompt(metadata: CompressedMetadata, user_context: str = "") -> str:
    focus = summarize_context(user_context, UX_CONTEXT_CHARS)
    lines = [
        "Analyze this UI design using the visual metadata below.",
        "",
        f"Visual elements: {metadata.elements}",
        f"Text content: {metadata.text_summary}",
        f"Color palette: {metadata.color_palette}",
        f"UI components: {metadata.labels_summary}",
    ]
    if focus:
        lines.append(f"User focus: {focus}")
    lines += [
        "",
        "Return JSON with keys layoutAnalysis {type, hierarchy, components, patterns}, "
        "usabilityFindings {issues [{type, description, severity}], strengths}, "
        "accessibilityReview {concerns, recommendations}.",
    ]
    return "\n".join(lines)


def build_synthesis_prompt(
    metadata: CompressedMetadata,
    ux_analysis: dict[str, Any],
    user_context: str = "",
) -> str:
    focus = summarize_context(user_context, SYNTHESIS_CONTEXT_CHARS)
    layout = ux_analysis.get("layoutAnalysis") if isinstance(ux_analysis.get("layoutAnalysis"), dict) else {}
    findings = ux_analysis.get("usabilityFindings") if isinstance(ux_analysis.get("usabilityFindings"), dict) else {}
    issues = json.dumps(findings.get("issues", []), default=str)[:SYNTHESIS_EXCERPT_CHARS]
    strengths = json.dumps(findings.get("strengths", []), default=str)[:SYNTHESIS_EXCERPT_CHARS]
    lines = [
        "Final synthesis stage of a multi-model UX analysis.",
        "",
        f"Vision metadata: {metadata.elements} | {metadata.text_summary} | {metadata.color_palette}",
        f"Layout: {layout.get('type', 'standard')} with {layout.get('hierarchy', 'standard hierarchy')}",
        f"Key issues: {issues}",
        f"Strengths: {strengths}",
    ]
    if focus:
        lines.append(f"User focus: {focus}")
    lines += [
        "",
        "Return JSON with keys visualAnnotations [{id, x, y, type, title, description, severity}], "
        "suggestions [{id, category, title, description, impact, effort, actionItems}], "
        "summary {overallScore 0-100, categoryScores {usability, accessibility, visual, content}, "
        "keyIssues, strengths}.",
    ]
    return "\n".join(lines)
