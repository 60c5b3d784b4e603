"""Repository layer: database access only. No ORM calls in pipeline logic."""

from ux_pipeline.repository.analysis_repo import AnalysisRepository

__all__ = ["AnalysisRepository"]
