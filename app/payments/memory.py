# app/payments/memory.py
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from app.payments.errors import AlreadyDecidedError, NotFoundError
from app.payments.model import (
    DECISION_TO_STATUS,
    IssuedPayment,
    PaymentFilter,
    PaymentPage,
    SettlementOutcome,
)
from app.payments.state_machine import (
    assert_approval_transition,
    assert_not_self_decision,
    assert_rejection_reason,
    assert_settlement_transition,
)
from app.payments.validation import (
    MAX_REFERENCE_ATTEMPTS,
    generate_transaction_reference,
    validate_amount,
    validate_purpose,
)
from services.directory import Directory


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _matches(p: IssuedPayment, flt: PaymentFilter) -> bool:
    if flt.approval_status and p.approval_status != flt.approval_status:
        return False
    if flt.payment_status and p.payment_status != flt.payment_status:
        return False
    if flt.initiated_by and p.initiated_by != flt.initiated_by:
        return False
    if flt.approved_by and p.approved_by != flt.approved_by:
        return False
    if flt.issued_to and p.issued_to != flt.issued_to:
        return False
    if flt.created_from and p.created_at < flt.created_from:
        return False
    if flt.created_to and p.created_at >= flt.created_to:
        return False
    return True


class InMemoryPaymentStore:
    """
    Process-local store for sandbox runs and tests.

    Every read-modify-write happens under one lock, which gives the same
    single-winner decision semantics as the conditional UPDATE in
    PostgresPaymentStore, but only within this process.
    """

    def __init__(self, directory: Directory):
        self.directory = directory
        self._lock = threading.Lock()
        self._payments: dict[UUID, IssuedPayment] = {}
        self._references: set[str] = set()

    def _new_reference(self) -> str:
        for _ in range(MAX_REFERENCE_ATTEMPTS):
            reference = generate_transaction_reference()
            if reference not in self._references:
                return reference
        raise RuntimeError("Could not allocate a unique transaction reference")

    def create(self, *, initiated_by: UUID, issued_to: UUID, amount, purpose: str) -> IssuedPayment:
        amount = validate_amount(amount)
        purpose = validate_purpose(purpose)

        recipient = self.directory.get_user(issued_to)
        if recipient is None or not recipient.is_active:
            raise NotFoundError("Recipient not found or inactive", issued_to=str(issued_to))

        now = _utcnow()
        with self._lock:
            reference = self._new_reference()
            payment = IssuedPayment(
                id=uuid4(),
                initiated_by=initiated_by,
                issued_to=issued_to,
                amount=amount,
                purpose=purpose,
                transaction_reference=reference,
                approval_status="pending",
                approved_by=None,
                approved_at=None,
                rejection_reason=None,
                payment_status="unset",
                payment_provider=None,
                payment_provider_reference=None,
                provider_error=None,
                provider_response=None,
                created_at=now,
                updated_at=now,
            )
            self._payments[payment.id] = payment
            self._references.add(reference)
        return payment

    def get(self, payment_id: UUID) -> IssuedPayment:
        with self._lock:
            payment = self._payments.get(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found", payment_id=str(payment_id))
        return payment

    def get_by_provider_reference(self, provider_reference: str) -> Optional[IssuedPayment]:
        with self._lock:
            for payment in self._payments.values():
                if payment.payment_provider_reference == provider_reference:
                    return payment
        return None

    def list_pending(self, *, page: int, limit: int) -> PaymentPage:
        return self.list_by_filter(PaymentFilter(approval_status="pending"), page=page, limit=limit)

    def list_by_filter(self, flt: PaymentFilter, *, page: int, limit: int) -> PaymentPage:
        page = max(1, int(page))
        limit = max(1, int(limit))
        with self._lock:
            matched = [p for p in self._payments.values() if _matches(p, flt)]

        matched.sort(key=lambda p: (p.created_at, str(p.id)), reverse=True)
        offset = (page - 1) * limit
        return PaymentPage(items=matched[offset:offset + limit], page=page, limit=limit, total=len(matched))

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

        with self._lock:
            current = self._payments.get(payment_id)
            if current is None:
                raise NotFoundError("Payment not found", payment_id=str(payment_id))
            if current.approval_status != "pending":
                raise AlreadyDecidedError(current.approval_status)
            assert_not_self_decision(current.initiated_by, approved_by)
            assert_approval_transition(current.approval_status, new_status)

            now = _utcnow()
            updated = replace(
                current,
                approval_status=new_status,
                approved_by=approved_by,
                approved_at=now,
                rejection_reason=reason,
                updated_at=now,
            )
            self._payments[payment_id] = updated
        return updated

    def record_settlement_outcome(self, payment_id: UUID, outcome: SettlementOutcome) -> IssuedPayment:
        with self._lock:
            current = self._payments.get(payment_id)
            if current is None:
                raise NotFoundError("Payment not found", payment_id=str(payment_id))
            assert_settlement_transition(current.approval_status, current.payment_status, outcome.payment_status)

            updated = replace(
                current,
                payment_status=outcome.payment_status,
                payment_provider=outcome.provider or current.payment_provider,
                payment_provider_reference=outcome.provider_reference or current.payment_provider_reference,
                provider_error=outcome.provider_error,
                provider_response=outcome.provider_response if outcome.provider_response is not None else current.provider_response,
                updated_at=_utcnow(),
            )
            self._payments[payment_id] = updated
        return updated
