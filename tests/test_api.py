"""API: POST/GET /api/analyses with the pipeline and repository swapped for test doubles."""

import pytest
from fastapi.testclient import TestClient

from ux_pipeline.api.main import _get_analysis_repo, _get_pipeline, app
from ux_pipeline.pipeline.runner import AnalysisPipeline
from ux_pipeline.repository.analysis_repo import AnalysisRepository
from tests.conftest import SYNTHESIS_MODEL, UX_MODEL, ScriptedModel, make_budgets, make_stages, ux_payload

pytestmark = [pytest.mark.fast]


@pytest.fixture
def repo(session_factory):
    return AnalysisRepository(session_factory)


@pytest.fixture
def client_for(repo):
    """Yields a factory: client_for(pipeline) -> TestClient with dependencies overridden."""

    def _make(pipeline: AnalysisPipeline) -> TestClient:
        app.dependency_overrides[_get_pipeline] = lambda: pipeline
        app.dependency_overrides[_get_analysis_repo] = lambda: repo
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


def test_post_runs_pipeline_and_get_returns_record(client_for, repo):
    client = client_for(AnalysisPipeline(make_stages(), make_budgets(), repository=repo))
    resp = client.post(
        "/api/analyses",
        json={"image_url": "https://example.com/a.png", "image_id": "img-1", "user_context": "checkout"},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["image_id"] == "img-1"
    assert body["record"]["summary"]["overallScore"] == 72
    assert body["token_usage"] == 3000
    assert body["degraded"] is False

    resp = client.get("/api/analyses/img-1")
    assert resp.status_code == 200
    assert resp.json()["imageId"] == "img-1"
    assert resp.json()["suggestions"][0]["actionItems"] == ["Use #333 for body text"]

    resp = client.get("/api/analyses")
    assert resp.status_code == 200
    assert resp.json()[0]["image_id"] == "img-1"
    assert resp.json()[0]["overall_score"] == 72


def test_get_unknown_image_returns_404(client_for, repo):
    client = client_for(AnalysisPipeline(make_stages(), make_budgets(), repository=repo))
    assert client.get("/api/analyses/missing").status_code == 404


def test_stage_failure_names_the_stage(client_for, repo):
    stages = make_stages(ux_model=ScriptedModel(UX_MODEL, error=ConnectionError("upstream down")))
    client = client_for(AnalysisPipeline(stages, make_budgets(), repository=repo))
    resp = client.post("/api/analyses", json={"image_url": "https://example.com/a.png", "image_id": "img-2"})
    assert resp.status_code == 502
    detail = resp.json()["detail"]
    assert detail["stage"] == "ux_analysis"
    assert "upstream down" in detail["reason"]
    assert detail["completed_stages"] == ["vision_metadata"]


def test_budget_failure_returns_422(client_for, repo):
    stages = make_stages(
        ux_model=ScriptedModel(SYNTHESIS_MODEL, analysis=ux_payload(), token_usage=9000),
        ux_model_id=SYNTHESIS_MODEL,
    )
    client = client_for(AnalysisPipeline(stages, make_budgets(), repository=repo))
    resp = client.post("/api/analyses", json={"image_url": "https://example.com/a.png", "image_id": "img-3"})
    assert resp.status_code == 422
    assert resp.json()["detail"]["stage"] == "synthesis"


def test_blank_image_id_rejected(client_for, repo):
    client = client_for(AnalysisPipeline(make_stages(), make_budgets(), repository=repo))
    resp = client.post("/api/analyses", json={"image_url": "https://example.com/a.png", "image_id": "  "})
    assert resp.status_code == 400
