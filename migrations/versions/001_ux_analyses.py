"""ux_analyses

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ux_analyses",
        sa.Column("image_id", sa.String(), nullable=False),
        sa.Column("user_context", sa.String(), nullable=False, server_default=""),
        sa.Column("visual_annotations", postgresql.JSONB(), nullable=False),
        sa.Column("suggestions", postgresql.JSONB(), nullable=False),
        sa.Column("summary", postgresql.JSONB(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("image_id"),
    )
    op.create_index("ix_ux_analyses_updated_at", "ux_analyses", ["updated_at"])


def downgrade() -> None:
    op.drop_index("ix_ux_analyses_updated_at", table_name="ux_analyses")
    op.drop_table("ux_analyses")
