# app/payments/repository.py
from __future__ import annotations

import json
import logging
from typing import Any, Optional
from uuid import UUID, uuid4

from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor

from db import get_conn
from app.payments.errors import (
    AlreadyDecidedError,
    InvalidTransition,
    NotFoundError,
    SelfApprovalError,
    ValidationError,
)
from app.payments.model import (
    DECISION_TO_STATUS,
    IssuedPayment,
    PaymentFilter,
    PaymentPage,
    SettlementOutcome,
)
from app.payments.state_machine import (
    assert_rejection_reason,
    assert_settlement_transition,
    check_payment_invariants,
    settlement_sources,
)
from app.payments.validation import (
    MAX_REFERENCE_ATTEMPTS,
    generate_transaction_reference,
    validate_amount,
    validate_purpose,
)
from services.directory import Directory

logger = logging.getLogger("mredeo.payments.store")

REFERENCE_CONSTRAINT = "issued_payments_transaction_reference_key"

PAYMENT_COLUMNS = """
  id,
  initiated_by,
  issued_to,
  amount,
  purpose,
  transaction_reference,
  approval_status,
  approved_by,
  approved_at,
  rejection_reason,
  payment_status,
  payment_provider,
  payment_provider_reference,
  provider_error,
  provider_response,
  created_at,
  updated_at
"""


def _adapt_json(value: Any):
    # psycopg2 can't adapt dict -> use psycopg2.extras.Json
    return Json(value)


def _uuid_or_none(value: Any) -> Optional[UUID]:
    if value is None:
        return None
    return value if isinstance(value, UUID) else UUID(str(value))


def row_to_payment(row: dict[str, Any]) -> IssuedPayment:
    provider_response = row.get("provider_response")
    if isinstance(provider_response, str):
        provider_response = json.loads(provider_response)

    return IssuedPayment(
        id=_uuid_or_none(row["id"]),
        initiated_by=_uuid_or_none(row["initiated_by"]),
        issued_to=_uuid_or_none(row["issued_to"]),
        amount=row["amount"],
        purpose=row["purpose"],
        transaction_reference=row["transaction_reference"],
        approval_status=row["approval_status"],
        approved_by=_uuid_or_none(row.get("approved_by")),
        approved_at=row.get("approved_at"),
        rejection_reason=row.get("rejection_reason"),
        payment_status=row["payment_status"],
        payment_provider=row.get("payment_provider"),
        payment_provider_reference=row.get("payment_provider_reference"),
        provider_error=row.get("provider_error"),
        provider_response=provider_response,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# ==========================================================
# SQL (all functions run inside the caller's transaction)
# ==========================================================

def insert_payment(
    conn,
    *,
    initiated_by: UUID,
    issued_to: UUID,
    amount,
    purpose: str,
) -> dict[str, Any]:
    """
    Insert with a fresh reference; regenerate on the (vanishingly rare)
    unique-constraint collision. The savepoint keeps the outer transaction usable.
    """
    last_exc: Optional[Exception] = None
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            reference = generate_transaction_reference()
            cur.execute("SAVEPOINT issue_reference;")
            try:
                cur.execute(
                    f"""
                    INSERT INTO app.issued_payments (
                      id, initiated_by, issued_to, amount, purpose, transaction_reference,
                      approval_status, payment_status
                    )
                    VALUES (%s::uuid, %s::uuid, %s::uuid, %s, %s, %s, 'pending', 'unset')
                    RETURNING {PAYMENT_COLUMNS}
                    """,
                    (str(uuid4()), str(initiated_by), str(issued_to), amount, purpose, reference),
                )
            except pg_errors.UniqueViolation as exc:
                cur.execute("ROLLBACK TO SAVEPOINT issue_reference;")
                constraint = getattr(getattr(exc, "diag", None), "constraint_name", None)
                if constraint != REFERENCE_CONSTRAINT:
                    raise
                logger.warning("transaction reference collision attempt=%s reference=%s", attempt, reference)
                last_exc = exc
                continue
            row = cur.fetchone()
            cur.execute("RELEASE SAVEPOINT issue_reference;")
            return dict(row)

    raise RuntimeError("Could not allocate a unique transaction reference") from last_exc


def fetch_payment(conn, payment_id: UUID, *, for_update: bool = False) -> Optional[dict[str, Any]]:
    lock = "FOR UPDATE" if for_update else ""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {PAYMENT_COLUMNS} FROM app.issued_payments WHERE id = %s::uuid {lock}",
            (str(payment_id),),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def fetch_payment_by_provider_reference(conn, provider_reference: str) -> Optional[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PAYMENT_COLUMNS}
            FROM app.issued_payments
            WHERE payment_provider_reference = %s
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (provider_reference,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def decide_payment(
    conn,
    *,
    payment_id: UUID,
    approved_by: UUID,
    new_status: str,
    rejection_reason: Optional[str],
) -> Optional[dict[str, Any]]:
    """
    Compare-and-set on approval_status='pending'. Two racing deciders both
    reach this UPDATE; the loser blocks on the row lock, re-evaluates the
    WHERE clause after the winner commits and gets zero rows back.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE app.issued_payments
            SET
              approval_status = %s,
              approved_by = %s::uuid,
              approved_at = now(),
              rejection_reason = %s,
              updated_at = now()
            WHERE id = %s::uuid
              AND approval_status = 'pending'
              AND initiated_by <> %s::uuid
            RETURNING {PAYMENT_COLUMNS}
            """,
            (new_status, str(approved_by), rejection_reason, str(payment_id), str(approved_by)),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def update_settlement(
    conn,
    *,
    payment_id: UUID,
    outcome: SettlementOutcome,
    from_statuses: list[str],
) -> Optional[dict[str, Any]]:
    resp = _adapt_json(outcome.provider_response) if outcome.provider_response is not None else None
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE app.issued_payments
            SET
              payment_status = %s,
              payment_provider = COALESCE(%s, payment_provider),
              payment_provider_reference = COALESCE(%s, payment_provider_reference),
              provider_error = %s,
              provider_response = COALESCE(%s::jsonb, provider_response),
              updated_at = now()
            WHERE id = %s::uuid
              AND approval_status = 'approved'
              AND payment_status = ANY(%s)
            RETURNING {PAYMENT_COLUMNS}
            """,
            (
                outcome.payment_status,
                outcome.provider,
                outcome.provider_reference,
                outcome.provider_error,
                resp,
                str(payment_id),
                from_statuses,
            ),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def _filter_clause(flt: PaymentFilter) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []

    if flt.approval_status:
        clauses.append("approval_status = %s")
        params.append(flt.approval_status)
    if flt.payment_status:
        clauses.append("payment_status = %s")
        params.append(flt.payment_status)
    if flt.initiated_by:
        clauses.append("initiated_by = %s::uuid")
        params.append(str(flt.initiated_by))
    if flt.approved_by:
        clauses.append("approved_by = %s::uuid")
        params.append(str(flt.approved_by))
    if flt.issued_to:
        clauses.append("issued_to = %s::uuid")
        params.append(str(flt.issued_to))
    if flt.created_from:
        clauses.append("created_at >= %s")
        params.append(flt.created_from)
    if flt.created_to:
        clauses.append("created_at < %s")
        params.append(flt.created_to)

    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
    return where, params


def list_payments(conn, flt: PaymentFilter, *, limit: int, offset: int) -> tuple[list[dict[str, Any]], int]:
    where, params = _filter_clause(flt)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(f"SELECT count(*) AS total FROM app.issued_payments {where}", tuple(params))
        total = int(cur.fetchone()["total"])

        cur.execute(
            f"""
            SELECT {PAYMENT_COLUMNS}
            FROM app.issued_payments
            {where}
            ORDER BY created_at DESC, id DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params) + (limit, offset),
        )
        rows = [dict(r) for r in cur.fetchall()]
    return rows, total


# ==========================================================
# Store
# ==========================================================

def _log_invariants(payment: IssuedPayment) -> IssuedPayment:
    violations = check_payment_invariants(payment)
    if violations:
        logger.error("payment invariant violation payment_id=%s violations=%s", payment.id, violations)
    return payment


class PostgresPaymentStore:
    def __init__(self, directory: Directory):
        self.directory = directory

    def create(self, *, initiated_by: UUID, issued_to: UUID, amount, purpose: str) -> IssuedPayment:
        amount = validate_amount(amount)
        purpose = validate_purpose(purpose)

        recipient = self.directory.get_user(issued_to)
        if recipient is None or not recipient.is_active:
            raise NotFoundError("Recipient not found or inactive", issued_to=str(issued_to))

        with get_conn() as conn:
            row = insert_payment(
                conn,
                initiated_by=initiated_by,
                issued_to=issued_to,
                amount=amount,
                purpose=purpose,
            )
        return _log_invariants(row_to_payment(row))

    def get(self, payment_id: UUID) -> IssuedPayment:
        with get_conn() as conn:
            row = fetch_payment(conn, payment_id)
        if not row:
            raise NotFoundError("Payment not found", payment_id=str(payment_id))
        return row_to_payment(row)

    def get_by_provider_reference(self, provider_reference: str) -> Optional[IssuedPayment]:
        with get_conn() as conn:
            row = fetch_payment_by_provider_reference(conn, provider_reference)
        return row_to_payment(row) if row else None

    def list_pending(self, *, page: int, limit: int) -> PaymentPage:
        return self.list_by_filter(PaymentFilter(approval_status="pending"), page=page, limit=limit)

    def list_by_filter(self, flt: PaymentFilter, *, page: int, limit: int) -> PaymentPage:
        page = max(1, int(page))
        limit = max(1, int(limit))
        with get_conn() as conn:
            rows, total = list_payments(conn, flt, limit=limit, offset=(page - 1) * limit)
        return PaymentPage(items=[row_to_payment(r) for r in rows], page=page, limit=limit, total=total)

    def record_decision(
        self,
        payment_id: UUID,
        *,
        approved_by: UUID,
        decision: str,
        rejection_reason: Optional[str] = None,
    ) -> IssuedPayment:
        reason = assert_rejection_reason(decision, rejection_reason)
        new_status = DECISION_TO_STATUS[decision]

        with get_conn() as conn:
            row = decide_payment(
                conn,
                payment_id=payment_id,
                approved_by=approved_by,
                new_status=new_status,
                rejection_reason=reason,
            )
            if row is None:
                current = fetch_payment(conn, payment_id)
                if current is None:
                    raise NotFoundError("Payment not found", payment_id=str(payment_id))
                if current["approval_status"] != "pending":
                    raise AlreadyDecidedError(current["approval_status"])
                if str(current["initiated_by"]) == str(approved_by):
                    raise SelfApprovalError(payment_id=str(payment_id))
                raise ValidationError("Decision could not be recorded")

        return _log_invariants(row_to_payment(row))

    def record_settlement_outcome(self, payment_id: UUID, outcome: SettlementOutcome) -> IssuedPayment:
        with get_conn() as conn:
            row = update_settlement(
                conn,
                payment_id=payment_id,
                outcome=outcome,
                from_statuses=settlement_sources(outcome.payment_status),
            )
            if row is None:
                current = fetch_payment(conn, payment_id)
                if current is None:
                    raise NotFoundError("Payment not found", payment_id=str(payment_id))
                # raises InvalidTransition with the precise reason
                assert_settlement_transition(
                    current["approval_status"], current["payment_status"], outcome.payment_status
                )
                raise InvalidTransition("Settlement outcome could not be recorded")

        return _log_invariants(row_to_payment(row))
