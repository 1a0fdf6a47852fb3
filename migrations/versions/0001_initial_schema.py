"""Initial schema: series

Revision ID: 0001
Revises: None
Create Date: 2026-01-01 00:00:00
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _table_exists(name: str) -> bool:
    conn = op.get_bind()
    result = conn.execute(
        sa.text("SELECT 1 FROM sqlite_master WHERE type='table' AND name=:n"),
        {"n": name},
    )
    return result.fetchone() is not None


def upgrade() -> None:
    # Guarded so it can run against a DB that init_db() already created
    if _table_exists("series"):
        return

    op.create_table(
        "series",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uuid", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("folder_path", sa.String(), nullable=False),
        sa.Column("date_added", sa.DateTime(), nullable=False),
        sa.Column("date_modified", sa.DateTime(), nullable=False),
        sa.Column("volume_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_favorite", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("is_finished", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("last_read_date", sa.DateTime(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("volume_names", sa.JSON(), nullable=False),
        sa.Column("read_volumes", sa.JSON(), nullable=False),
        sa.Column("reading_progress", sa.JSON(), nullable=False),
    )
    op.create_index("ix_series_uuid", "series", ["uuid"], unique=True)
    op.create_index("ix_series_folder_path", "series", ["folder_path"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_series_folder_path", table_name="series")
    op.drop_index("ix_series_uuid", table_name="series")
    op.drop_table("series")
