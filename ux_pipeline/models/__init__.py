"""SQLModel table/entity definitions. Used by Repository layer only."""

from ux_pipeline.models.entities import UXAnalysis

__all__ = ["UXAnalysis"]
