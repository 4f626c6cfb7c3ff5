"""Create exclusions table."""

from __future__ import annotations

import logging

from alembic import op
import sqlalchemy as sa

revision = "9d4a17c3e8b2"
down_revision = "5b2e9c41d7a0"
branch_labels = None
depends_on = None

logger = logging.getLogger(__name__)


def upgrade() -> None:
    op.create_table(
        "exclusions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("value", sa.String(length=255), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_exclusions"),
        sa.UniqueConstraint("value", name="uq_exclusions_value"),
    )
    logger.info("scout.migration.applied", extra={"revision": revision})


def downgrade() -> None:
    op.drop_table("exclusions")
