"""identity mirror and issued payments

Revision ID: 0001_issued_payments
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_issued_payments"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute("CREATE SCHEMA IF NOT EXISTS users;")
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")

    # read-only mirror of the identity provider
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS users.users (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            phone_number text,
            full_name text,
            is_active boolean NOT NULL DEFAULT true,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS users.user_roles (
            user_id uuid PRIMARY KEY REFERENCES users.users(id) ON DELETE CASCADE,
            role text NOT NULL DEFAULT 'member'
                CHECK (role IN ('member', 'admin_chairperson', 'admin_secretary', 'admin_signatory', 'admin_treasurer')),
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.issued_payments (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            initiated_by uuid NOT NULL REFERENCES users.users(id),
            issued_to uuid NOT NULL REFERENCES users.users(id),
            amount numeric(14, 2) NOT NULL,
            purpose text NOT NULL,
            transaction_reference text NOT NULL,
            approval_status text NOT NULL DEFAULT 'pending',
            approved_by uuid REFERENCES users.users(id),
            approved_at timestamptz,
            rejection_reason text,
            payment_status text NOT NULL DEFAULT 'unset',
            payment_provider text,
            payment_provider_reference text,
            provider_error text,
            provider_response jsonb,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now(),

            CONSTRAINT issued_payments_transaction_reference_key UNIQUE (transaction_reference),
            CONSTRAINT issued_payments_amount_positive CHECK (amount > 0),
            CONSTRAINT issued_payments_purpose_present CHECK (length(btrim(purpose)) > 0),
            CONSTRAINT issued_payments_approval_status_check
                CHECK (approval_status IN ('pending', 'approved', 'rejected')),
            CONSTRAINT issued_payments_payment_status_check
                CHECK (payment_status IN ('unset', 'processing', 'settled', 'provider_failed')),
            CONSTRAINT issued_payments_no_self_decision
                CHECK (approved_by IS NULL OR approved_by <> initiated_by),
            CONSTRAINT issued_payments_decision_recorded
                CHECK ((approval_status = 'pending') = (approved_by IS NULL AND approved_at IS NULL)),
            CONSTRAINT issued_payments_rejection_reason_iff_rejected
                CHECK (
                    (approval_status = 'rejected' AND rejection_reason IS NOT NULL AND length(btrim(rejection_reason)) > 0)
                    OR (approval_status <> 'rejected' AND rejection_reason IS NULL)
                ),
            CONSTRAINT issued_payments_settlement_only_when_approved
                CHECK (approval_status = 'approved' OR payment_status = 'unset')
        );
        """
    )

    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_issued_payments_status_created
        ON app.issued_payments (approval_status, created_at DESC, id DESC);
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_issued_payments_created
        ON app.issued_payments (created_at DESC, id DESC);
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_issued_payments_provider_reference
        ON app.issued_payments (payment_provider_reference)
        WHERE payment_provider_reference IS NOT NULL;
        """
    )

    # transaction_reference is immutable once assigned
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app.issued_payments_guard_reference()
        RETURNS trigger AS $$
        BEGIN
            IF NEW.transaction_reference IS DISTINCT FROM OLD.transaction_reference THEN
                RAISE EXCEPTION 'transaction_reference is immutable';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER issued_payments_guard_reference
        BEFORE UPDATE ON app.issued_payments
        FOR EACH ROW EXECUTE FUNCTION app.issued_payments_guard_reference();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS issued_payments_guard_reference ON app.issued_payments;")
    op.execute("DROP FUNCTION IF EXISTS app.issued_payments_guard_reference();")
    op.execute("DROP TABLE IF EXISTS app.issued_payments;")
    op.execute("DROP TABLE IF EXISTS users.user_roles;")
    op.execute("DROP TABLE IF EXISTS users.users;")
