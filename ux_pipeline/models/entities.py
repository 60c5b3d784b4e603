"""SQLModel table definitions. JSON columns become JSONB on PostgreSQL."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UXAnalysis(SQLModel, table=True):
    """One consolidated analysis per image. Rewritten in place when the image is re-analyzed."""

    __tablename__ = "ux_analyses"

    image_id: str = Field(primary_key=True)
    user_context: str = ""
    visual_annotations: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONDocument, nullable=False))
    suggestions: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONDocument, nullable=False))
    summary: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONDocument, nullable=False))
    analysis_metadata: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSONDocument, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
