"""research_pipeline_schema

Creates the sector analysis tree (sector_analyses -> sub_sectors -> stocks ->
stock_analyses) and the job_statuses tracking table.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00+00:00

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "sector_analyses",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("sector_name", sa.String(200), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="in_progress"),
        sa.Column("full_report", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_sector_analyses"),
        sa.CheckConstraint(
            "status IN ('in_progress', 'completed', 'failed')",
            name="ck_sector_analyses_status",
        ),
    )
    op.create_index("idx_sector_analyses_user", "sector_analyses", ["user_id"])

    op.create_table(
        "sub_sectors",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("sector_analysis_id", sa.String(32), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_sub_sectors"),
        sa.ForeignKeyConstraint(
            ["sector_analysis_id"],
            ["sector_analyses.id"],
            name="fk_sub_sectors_sector_analysis_id_sector_analyses",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'analyzing', 'completed')",
            name="ck_sub_sectors_status",
        ),
    )
    op.create_index("idx_sub_sectors_sector_analysis", "sub_sectors", ["sector_analysis_id"])

    op.create_table(
        "stocks",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("sub_sector_id", sa.String(32), nullable=False),
        sa.Column("company_name", sa.String(200), nullable=False),
        sa.Column("ticker", sa.String(20), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("preliminary_notes", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_stocks"),
        sa.ForeignKeyConstraint(
            ["sub_sector_id"],
            ["sub_sectors.id"],
            name="fk_stocks_sub_sector_id_sub_sectors",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint("rank >= 0", name="ck_stocks_rank_non_negative"),
    )
    op.create_index("idx_stocks_sub_sector", "stocks", ["sub_sector_id"])

    op.create_table(
        "stock_analyses",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("stock_id", sa.String(32), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("raw_analysis", sa.Text(), nullable=False, server_default=""),
        sa.Column("judge_review", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "insights",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_stock_analyses"),
        sa.ForeignKeyConstraint(
            ["stock_id"],
            ["stocks.id"],
            name="fk_stock_analyses_stock_id_stocks",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("stock_id", name="uq_stock_analyses_stock_id"),
        sa.CheckConstraint(
            "status IN ('pending', 'analyzing', 'review_failed', 'completed')",
            name="ck_stock_analyses_status",
        ),
        sa.CheckConstraint(
            "attempt_count BETWEEN 1 AND 3", name="ck_stock_analyses_attempt_count"
        ),
    )

    op.create_table(
        "job_statuses",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("job_id", sa.String(128), nullable=False),
        sa.Column("job_type", sa.String(30), nullable=False),
        sa.Column("related_id", sa.String(32), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="waiting"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_job_statuses"),
        sa.UniqueConstraint("job_id", name="uq_job_statuses_job_id"),
        sa.CheckConstraint(
            "status IN ('waiting', 'active', 'completed', 'failed')",
            name="ck_job_statuses_status",
        ),
        sa.CheckConstraint(
            "progress BETWEEN 0 AND 100", name="ck_job_statuses_progress_range"
        ),
    )
    op.create_index("idx_job_statuses_related", "job_statuses", ["related_id"])
    op.create_index(
        "idx_job_statuses_status_updated", "job_statuses", ["status", "updated_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_job_statuses_status_updated", table_name="job_statuses")
    op.drop_index("idx_job_statuses_related", table_name="job_statuses")
    op.drop_table("job_statuses")
    op.drop_table("stock_analyses")
    op.drop_index("idx_stocks_sub_sector", table_name="stocks")
    op.drop_table("stocks")
    op.drop_index("idx_sub_sectors_sector_analysis", table_name="sub_sectors")
    op.drop_table("sub_sectors")
    op.drop_index("idx_sector_analyses_user", table_name="sector_analyses")
    op.drop_table("sector_analyses")
