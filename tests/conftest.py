"""Pytest fixtures. In-memory SQLite for fast tests, testcontainers PostgreSQL for slow ones."""

import os
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from testcontainers.postgres import PostgresContainer

from ux_pipeline.ai.model_base import BaseStageModel
from ux_pipeline.ai.schema import ModelCard, ModelRequest, ModelResponse, RawVisionMetadata
from ux_pipeline.ai.vision_base import BaseVisionClient, MockVisionClient
from ux_pipeline.core import config as config_module
from ux_pipeline.models.entities import UXAnalysis  # noqa: F401 - register table with metadata
from ux_pipeline.pipeline.budget import TokenBudget
from ux_pipeline.pipeline.metadata import MetadataExtractor
from ux_pipeline.pipeline import recovery as recovery_module
from ux_pipeline.pipeline.stages import build_default_stages

UX_MODEL = "gpt-4o"
SYNTHESIS_MODEL = "claude-opus-4-20250514"


def clear_app_db_caches() -> None:
    """
    Clear the app's config and DB-related caches. Call this in any fixture that
    sets DATABASE_URL (e.g. to a testcontainer URL) so the app uses the new URL
    instead of a previously cached connection.
    """
    from ux_pipeline.api.main import _get_analysis_repo, _get_pipeline, _get_session_factory

    config_module.reset_config()
    _get_session_factory.cache_clear()
    _get_analysis_repo.cache_clear()
    _get_pipeline.cache_clear()


@pytest.fixture(autouse=True)
def _fresh_config():
    """Each test starts without a cached Settings singleton."""
    config_module.reset_config()
    yield
    config_module.reset_config()


@pytest.fixture(autouse=True)
def _no_backoff_sleep(monkeypatch):
    """Retry backoff never sleeps in tests; tests that check waits pass their own sleep."""
    monkeypatch.setattr(recovery_module, "backoff_sleep", lambda seconds: None)


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite shared across threads, with all tables created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(sqlite_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="module")
def postgres_container():
    """Module-scoped PostgreSQL 16 container (testcontainers)."""
    with PostgresContainer("postgres:16-alpine") as postgres:
        yield postgres


@pytest.fixture(scope="module")
def pg_engine(postgres_container):
    """Engine bound to the Postgres testcontainer, DATABASE_URL pointed at it for the module."""
    url = postgres_container.get_connection_url()
    prev = os.environ.get("DATABASE_URL")
    os.environ["DATABASE_URL"] = url
    clear_app_db_caches()
    engine = create_engine(url, pool_pre_ping=True)
    try:
        yield engine
    finally:
        engine.dispose()
        if prev is not None:
            os.environ["DATABASE_URL"] = prev
        else:
            os.environ.pop("DATABASE_URL", None)
        clear_app_db_caches()


class ScriptedModel(BaseStageModel):
    """Stage model double: returns a fixed analysis (or raises) and records every request."""

    def __init__(
        self,
        model_id: str,
        analysis: Any = None,
        token_usage: int | None = 1000,
        error: Exception | None = None,
        fail_for: set[str] | None = None,
    ) -> None:
        self.model_id = model_id
        self.analysis = analysis
        self.token_usage = token_usage
        self.error = error
        self.fail_for = fail_for or set()
        self.requests: list[ModelRequest] = []

    def get_model_card(self) -> ModelCard:
        return ModelCard(name=self.model_id, version="test")

    def invoke(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if request.image_ref in self.fail_for:
            raise ConnectionError(f"upstream unavailable for {request.image_ref}")
        return ModelResponse(analysis=self.analysis, token_usage=self.token_usage)


class FailingVisionClient(BaseVisionClient):
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error or ConnectionError("vision service unreachable")
        self.calls = 0

    def get_model_card(self) -> ModelCard:
        return ModelCard(name="failing-vision", version="test")

    def extract_metadata(self, image_ref: str) -> RawVisionMetadata:
        self.calls += 1
        raise self.error


def ux_payload() -> dict[str, Any]:
    return {
        "layoutAnalysis": {"type": "grid", "hierarchy": "header > content", "components": ["nav"], "patterns": []},
        "usabilityFindings": {
            "issues": [
                {"type": "contrast", "description": "Low contrast body text", "severity": "high"},
                {"type": "spacing", "description": "Cramped form fields", "severity": "low"},
            ],
            "strengths": ["Consistent typography"],
        },
        "accessibilityReview": {
            "concerns": ["Missing alt text"],
            "recommendations": ["Add alt text to hero image"],
        },
    }


def synthesis_payload() -> dict[str, Any]:
    return {
        "visualAnnotations": [
            {
                "id": "a1",
                "x": 12,
                "y": 30,
                "type": "issue",
                "title": "Low contrast",
                "description": "Body text contrast is 3:1",
                "severity": "high",
            }
        ],
        "suggestions": [
            {
                "id": "s1",
                "category": "accessibility",
                "title": "Increase contrast",
                "description": "Darken body text",
                "impact": "high",
                "effort": "low",
                "actionItems": ["Use #333 for body text"],
            }
        ],
        "summary": {
            "overallScore": 72,
            "categoryScores": {"usability": 70, "accessibility": 60, "visual": 80, "content": 78},
            "keyIssues": ["Low contrast"],
            "strengths": ["Consistent typography"],
        },
    }


def make_budgets(**overrides: TokenBudget) -> dict[str, TokenBudget]:
    budgets = {
        UX_MODEL: TokenBudget(stage1_ceiling=3000, stage2_ceiling=10000, stage3_ceiling=20000, buffer=7000),
        SYNTHESIS_MODEL: TokenBudget(stage1_ceiling=2000, stage2_ceiling=8000, stage3_ceiling=15000, buffer=5000),
    }
    budgets.update(overrides)
    return budgets


def make_stages(
    ux_model: BaseStageModel | None = None,
    synthesis_model: BaseStageModel | None = None,
    vision: BaseVisionClient | None = None,
    ux_model_id: str = UX_MODEL,
    synthesis_model_id: str = SYNTHESIS_MODEL,
):
    """Default three-stage list wired to test doubles."""
    return build_default_stages(
        MetadataExtractor(vision or MockVisionClient()),
        ux_model or ScriptedModel(ux_model_id, analysis=ux_payload(), token_usage=1200),
        ux_model_id,
        synthesis_model or ScriptedModel(synthesis_model_id, analysis=synthesis_payload(), token_usage=1800),
        synthesis_model_id,
    )
