"""Create exercise_cache table

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "exercise_cache",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("cache_key", sa.String(255), nullable=False),
        sa.Column("exercise_type", sa.String(50), nullable=False),
        sa.Column("exercise_data", postgresql.JSONB(), nullable=False),
        sa.Column("user_context_hash", sa.String(64), nullable=False),
        sa.Column("difficulty", sa.Integer(), nullable=False),
        sa.Column("topics", postgresql.ARRAY(sa.Text()), server_default="{}", nullable=False),
        sa.Column("usage_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("generation_cost", sa.Numeric(10, 6), server_default="0", nullable=False),
        sa.Column("generation_time_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("cache_key", name="uq_exercise_cache_cache_key"),
        sa.CheckConstraint("difficulty >= 1 AND difficulty <= 5", name="ck_exercise_cache_difficulty"),
        sa.CheckConstraint("usage_count >= 0", name="ck_exercise_cache_usage_count"),
        sa.CheckConstraint("generation_cost >= 0", name="ck_exercise_cache_generation_cost"),
    )
    op.create_index("ix_exercise_cache_type_difficulty", "exercise_cache", ["exercise_type", "difficulty"])
    op.create_index("ix_exercise_cache_expires_at", "exercise_cache", ["expires_at"])
    op.create_index("ix_exercise_cache_last_used_at", "exercise_cache", ["last_used_at"])


def downgrade() -> None:
    op.drop_index("ix_exercise_cache_last_used_at", table_name="exercise_cache")
    op.drop_index("ix_exercise_cache_expires_at", table_name="exercise_cache")
    op.drop_index("ix_exercise_cache_type_difficulty", table_name="exercise_cache")
    op.drop_table("exercise_cache")
