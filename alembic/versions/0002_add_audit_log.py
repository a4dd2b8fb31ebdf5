"""add audit_log table

Revision ID: 0002_add_audit_log
Revises: 0001_issued_payments
Create Date: 2026-10-16 00:10:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0002_add_audit_log"
down_revision = "0001_issued_payments"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.audit_log (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            actor_user_id uuid NOT NULL,
            action text NOT NULL,
            resource_type text NOT NULL,
            target_id text,
            metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
            request_id text,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_audit_log_target
        ON app.audit_log (resource_type, target_id, created_at DESC);
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS app.audit_log;")
