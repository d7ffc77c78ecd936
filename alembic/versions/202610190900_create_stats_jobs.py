"""Create stats_jobs table for background computation jobs."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None

JOB_STATUSES = ("pending", "running", "completed", "failed")


def _has_table(inspector: sa.Inspector, table_name: str) -> bool:
    """Check if a table exists."""

    return table_name in inspector.get_table_names()


def upgrade() -> None:
    """Create stats_jobs with a key lookup index."""

    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if _has_table(inspector, "stats_jobs"):
        return

    status_list = ", ".join(f"'{status}'" for status in JOB_STATUSES)
    op.create_table(
        "stats_jobs",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total", sa.Integer(), nullable=True),
        sa.Column("processed", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.CheckConstraint(f"status IN ({status_list})", name="ck_stats_jobs_status"),
    )
    op.create_index(
        "idx_stats_jobs_key",
        "stats_jobs",
        ["key", sa.text("created_at DESC")],
    )


def downgrade() -> None:
    """Drop stats_jobs."""

    op.drop_index("idx_stats_jobs_key", table_name="stats_jobs")
    op.drop_table("stats_jobs")
