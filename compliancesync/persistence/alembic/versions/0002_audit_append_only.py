"""reject updates and deletes on audit_logs

Revision ID: 0002_audit_append_only
Revises: 0001_init
Create Date: 2026-10-05 09:30:00.000000
"""
from __future__ import annotations

from alembic import op


revision = "0002_audit_append_only"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Enforce append-only at the database too, covering writers that bypass the ORM.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION audit_logs_reject_mutation() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_logs is append-only (% rejected)', TG_OP
                USING ERRCODE = 'insufficient_privilege';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_logs_append_only
        BEFORE UPDATE OR DELETE ON audit_logs
        FOR EACH ROW EXECUTE FUNCTION audit_logs_reject_mutation()
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_logs_no_truncate
        BEFORE TRUNCATE ON audit_logs
        FOR EACH STATEMENT EXECUTE FUNCTION audit_logs_reject_mutation()
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS audit_logs_no_truncate ON audit_logs")
    op.execute("DROP TRIGGER IF EXISTS audit_logs_append_only ON audit_logs")
    op.execute("DROP FUNCTION IF EXISTS audit_logs_reject_mutation()")
