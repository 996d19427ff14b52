"""add evidence revision counter

Revision ID: 0003_evidence_revision
Revises: 0002_audit_append_only
Create Date: 2026-10-19 10:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0003_evidence_revision"
down_revision = "0002_audit_append_only"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "evidence",
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    op.drop_column("evidence", "revision")
