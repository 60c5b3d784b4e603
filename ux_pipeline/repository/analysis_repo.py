"""Analysis repository: the single write path for consolidated analysis records."""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ux_pipeline.models.entities import UXAnalysis
from ux_pipeline.pipeline.record import AnalysisRecord

_log = logging.getLogger(__name__)


class AnalysisRepository:
    """
    Upsert and read ux_analyses rows keyed by image_id.
    Used by AnalysisPipeline after consolidation and by the CLI/API for reads.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session_scope(self, write: bool = False) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            if write:
                session.commit()
        finally:
            session.close()

    def upsert_analysis(self, image_id: str, record: AnalysisRecord, user_context: str = "") -> None:
        """
        Insert or replace the analysis for image_id. A concurrent insert of the same
        image_id is retried once as an update so the later write wins.
        """
        try:
            self._write(image_id, record, user_context)
        except IntegrityError:
            _log.info("Analysis for %s inserted concurrently; retrying as update", image_id)
            self._write(image_id, record, user_context)

    def _write(self, image_id: str, record: AnalysisRecord, user_context: str) -> None:
        payload = record.storage_payload()
        now = datetime.now(timezone.utc)
        with self._session_scope(write=True) as session:
            row = session.get(UXAnalysis, image_id)
            if row is None:
                session.add(
                    UXAnalysis(
                        image_id=image_id,
                        user_context=user_context or "",
                        visual_annotations=payload["visualAnnotations"],
                        suggestions=payload["suggestions"],
                        summary=payload["summary"],
                        analysis_metadata=payload["metadata"],
                        created_at=record.created_at,
                        updated_at=now,
                    )
                )
                return
            row.user_context = user_context or ""
            row.visual_annotations = payload["visualAnnotations"]
            row.suggestions = payload["suggestions"]
            row.summary = payload["summary"]
            row.analysis_metadata = payload["metadata"]
            row.updated_at = now

    def get_analysis(self, image_id: str) -> AnalysisRecord | None:
        """Return the stored record for image_id, or None if it was never analyzed."""
        with self._session_scope() as session:
            row = session.get(UXAnalysis, image_id)
            return _to_record(row) if row is not None else None

    def get_user_context(self, image_id: str) -> str | None:
        with self._session_scope() as session:
            row = session.get(UXAnalysis, image_id)
            return row.user_context if row is not None else None

    def list_analyses(self, limit: int = 50) -> list[AnalysisRecord]:
        """Most recently updated analyses first."""
        with self._session_scope() as session:
            rows = session.execute(
                select(UXAnalysis).order_by(UXAnalysis.updated_at.desc()).limit(limit)
            ).scalars().all()
            return [_to_record(row) for row in rows]


def _to_record(row: UXAnalysis) -> AnalysisRecord:
    return AnalysisRecord.model_validate(
        {
            "imageId": row.image_id,
            "visualAnnotations": row.visual_annotations or [],
            "suggestions": row.suggestions or [],
            "summary": row.summary or {},
            "metadata": row.analysis_metadata or {},
            "createdAt": row.created_at,
        }
    )
