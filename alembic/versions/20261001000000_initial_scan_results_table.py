"""Initial schema: scan_results table (append-only result versions per target).

Revision ID: 20261001000000
Revises:
Create Date: 2026-10-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "20261001000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "scan_results",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("target_key", sa.String(length=1024), nullable=False),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("partial", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("result", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_scan_results_target_key"), "scan_results", ["target_key"], unique=False)
    op.create_index(
        "ix_scan_results_target_scanned",
        "scan_results",
        ["target_key", "scanned_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_scan_results_target_scanned", table_name="scan_results")
    op.drop_index(op.f("ix_scan_results_target_key"), table_name="scan_results")
    op.drop_table("scan_results")
