"""HTTP API: run analyses and read stored results."""

import logging
from functools import lru_cache
from typing import Any, Callable

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from ux_pipeline.core.config import get_config
from ux_pipeline.pipeline.errors import PersistenceFailed, PipelineError, TokenBudgetExceeded
from ux_pipeline.pipeline.runner import AnalysisPipeline
from ux_pipeline.repository.analysis_repo import AnalysisRepository

_log = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _get_session_factory() -> Callable[[], Session]:
    from sqlalchemy import create_engine

    cfg = get_config()
    engine = create_engine(cfg.database_url, pool_pre_ping=True)
    return sessionmaker(engine, autocommit=False, autoflush=False, expire_on_commit=False)


@lru_cache(maxsize=1)
def _get_analysis_repo() -> AnalysisRepository:
    return AnalysisRepository(_get_session_factory())


@lru_cache(maxsize=1)
def _get_pipeline() -> AnalysisPipeline:
    return AnalysisPipeline.from_settings(get_config(), repository=_get_analysis_repo())


app = FastAPI(title="UX Analysis Pipeline")


class AnalysisIn(BaseModel):
    image_url: str
    image_id: str
    user_context: str = ""


class AnalysisRunOut(BaseModel):
    image_id: str
    record: dict[str, Any]
    warnings: list[str] = []
    fallbacks_applied: list[str] = []
    degraded: bool = False
    token_usage: int = 0


class AnalysisListItemOut(BaseModel):
    image_id: str
    overall_score: float | None = None
    degraded: bool = False
    created_at: str


def _status_for(error: PipelineError) -> int:
    if isinstance(error, TokenBudgetExceeded):
        return 422
    if isinstance(error, PersistenceFailed):
        return 503
    return 502


@app.post("/api/analyses", response_model=AnalysisRunOut, status_code=201)
def api_create_analysis(
    body: AnalysisIn,
    pipeline: AnalysisPipeline = Depends(_get_pipeline),
) -> AnalysisRunOut:
    """Run the full pipeline for one image and store the consolidated record."""
    if not body.image_id.strip() or not body.image_url.strip():
        raise HTTPException(status_code=400, detail="image_id and image_url must be non-empty")
    try:
        outcome = pipeline.run(body.image_url, body.image_id.strip(), body.user_context)
    except PipelineError as e:
        _log.warning("Analysis of %s failed at %s: %s", body.image_id, e.stage_name, e.reason)
        raise HTTPException(
            status_code=_status_for(e),
            detail={"stage": e.stage_name, "reason": e.reason, "completed_stages": e.completed_stages},
        ) from e
    return AnalysisRunOut(
        image_id=body.image_id.strip(),
        record=outcome.record.storage_payload(),
        warnings=list(outcome.warnings),
        fallbacks_applied=list(outcome.fallbacks_applied),
        degraded=outcome.degraded,
        token_usage=outcome.token_usage,
    )


@app.get("/api/analyses/{image_id}")
def api_get_analysis(
    image_id: str,
    repo: AnalysisRepository = Depends(_get_analysis_repo),
) -> dict[str, Any]:
    """Return the stored record for image_id (camelCase keys)."""
    record = repo.get_analysis(image_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return record.model_dump(mode="json", by_alias=True)


@app.get("/api/analyses", response_model=list[AnalysisListItemOut])
def api_list_analyses(
    limit: int = Query(50, ge=1, le=500),
    repo: AnalysisRepository = Depends(_get_analysis_repo),
) -> list[AnalysisListItemOut]:
    """Most recently updated analyses first."""
    return [
        AnalysisListItemOut(
            image_id=record.image_id or "",
            overall_score=record.summary.overall_score,
            degraded=record.metadata.degraded,
            created_at=record.created_at.isoformat(),
        )
        for record in repo.list_analyses(limit=limit)
    ]
