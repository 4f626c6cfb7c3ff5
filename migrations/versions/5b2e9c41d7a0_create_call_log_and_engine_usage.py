"""Create api_call_log and engine_usage tables.

The (source, created_at) index serves the rolling-window health queries, which
always filter on a recent created_at cutoff.
"""

from __future__ import annotations

import logging

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "5b2e9c41d7a0"
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger(__name__)

_JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "api_call_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("latency_ms", sa.Integer(), nullable=False),
        sa.Column("rate_limit_remaining", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("context", _JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_api_call_log"),
    )
    op.create_index("ix_api_call_log_source_created", "api_call_log", ["source", "created_at"], unique=False)

    op.create_table(
        "engine_usage",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("engine", sa.String(length=64), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_engine_usage"),
        sa.UniqueConstraint("engine", "usage_date", name="uq_engine_usage_engine_date"),
    )
    logger.info("scout.migration.applied", extra={"revision": revision})


def downgrade() -> None:
    op.drop_table("engine_usage")
    op.drop_index("ix_api_call_log_source_created", table_name="api_call_log")
    op.drop_table("api_call_log")
