"""Abstract base and mock implementation for stage model clients."""

import time
from abc import ABC, abstractmethod
from typing import Any

from ux_pipeline.ai.schema import ModelCard, ModelRequest, ModelResponse

UX_ANALYSIS_REQUEST = "ux_analysis"
SYNTHESIS_REQUEST = "synthesis"


class BaseStageModel(ABC):
    """Abstract base for a model invoked by one pipeline stage."""

    @abstractmethod
    def get_model_card(self) -> ModelCard:
        """Return model identity (name, version)."""
        ...

    @abstractmethod
    def invoke(self, request: ModelRequest) -> ModelResponse:
        """Send one request; return the structured analysis and token usage."""
        ...


def _mock_ux_analysis() -> dict[str, Any]:
    return {
        "layoutAnalysis": {
            "type": "flex",
            "hierarchy": "header > main > footer",
            "components": ["navigation", "hero", "form"],
            "patterns": ["card layout"],
        },
        "usabilityFindings": {
            "issues": [
                {"type": "contrast", "description": "Secondary text has low contrast", "severity": "medium"},
            ],
            "strengths": ["Clear primary call to action"],
        },
        "accessibilityReview": {
            "concerns": ["Icon buttons lack labels"],
            "recommendations": ["Add aria-labels to icon-only buttons"],
        },
    }


def _mock_synthesis() -> dict[str, Any]:
    return {
        "visualAnnotations": [
            {
                "id": "a1",
                "x": 40,
                "y": 22,
                "type": "issue",
                "title": "Low contrast",
                "description": "Secondary text fails WCAG AA contrast.",
                "severity": "medium",
            }
        ],
        "suggestions": [
            {
                "id": "s1",
                "category": "accessibility",
                "title": "Raise text contrast",
                "description": "Darken secondary text to at least 4.5:1.",
                "impact": "high",
                "effort": "low",
                "actionItems": ["Update the secondary text color token"],
            }
        ],
        "summary": {
            "overallScore": 78,
            "categoryScores": {"usability": 80, "accessibility": 68, "visual": 84, "content": 79},
            "keyIssues": ["Low contrast secondary text"],
            "strengths": ["Clear primary call to action"],
        },
    }


class MockStageModel(BaseStageModel):
    """
    Placeholder model for testing and development.

    Returns a canned payload for the request type and reports token usage no larger than
    the requested max_tokens.
    """

    def __init__(self, model_id: str = "mock-model", token_usage: int = 1200, latency_seconds: float = 0.0) -> None:
        self._model_id = model_id
        self._token_usage = token_usage
        self._latency = latency_seconds

    def get_model_card(self) -> ModelCard:
        return ModelCard(name=self._model_id, version="mock")

    def invoke(self, request: ModelRequest) -> ModelResponse:
        if self._latency:
            time.sleep(self._latency)
        if request.request_type == SYNTHESIS_REQUEST:
            analysis = _mock_synthesis()
        else:
            analysis = _mock_ux_analysis()
        return ModelResponse(analysis=analysis, token_usage=min(self._token_usage, request.max_tokens))
