# app/payments/state_machine.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from app.payments.errors import InvalidTransition, SelfApprovalError, ValidationError
from app.payments.model import IssuedPayment


APPROVAL_ALLOWED = {
    "pending": {"approved", "rejected"},
    "approved": set(),
    "rejected": set(),
}

# only meaningful once approval_status == "approved"
SETTLEMENT_ALLOWED = {
    "unset": {"processing", "provider_failed"},
    "processing": {"settled", "provider_failed"},
    "settled": set(),
    "provider_failed": set(),
}


def assert_approval_transition(old: str, new: str) -> None:
    if new not in APPROVAL_ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal approval transition: {old} -> {new}")


def assert_settlement_transition(approval_status: str, old: str, new: str) -> None:
    if approval_status != "approved":
        raise InvalidTransition(
            f"Settlement status cannot change while approval_status={approval_status}"
        )
    if new not in SETTLEMENT_ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal settlement transition: {old} -> {new}")


def settlement_sources(new: str) -> list[str]:
    """Payment statuses from which `new` may be entered."""
    return sorted(old for old, targets in SETTLEMENT_ALLOWED.items() if new in targets)


def assert_not_self_decision(initiated_by: UUID, approved_by: UUID) -> None:
    if str(initiated_by) == str(approved_by):
        raise SelfApprovalError()


def assert_rejection_reason(decision: str, rejection_reason: Optional[str]) -> Optional[str]:
    """
    Returns the reason to persist: trimmed text for rejections, None for approvals.
    """
    if decision == "reject":
        reason = (rejection_reason or "").strip()
        if not reason:
            raise ValidationError("Rejection reason is required")
        return reason
    if decision == "approve":
        return None
    raise ValidationError(f"Unknown decision: {decision!r}")


def check_payment_invariants(payment: IssuedPayment) -> list[str]:
    violations: list[str] = []

    if payment.approval_status != "pending":
        if payment.approved_by is None:
            violations.append("decided payment without approved_by")
        elif str(payment.approved_by) == str(payment.initiated_by):
            violations.append("approved_by equals initiated_by")

    if payment.approval_status != "approved" and payment.payment_status != "unset":
        violations.append(
            f"payment_status={payment.payment_status} while approval_status={payment.approval_status}"
        )

    has_reason = bool((payment.rejection_reason or "").strip())
    if has_reason != (payment.approval_status == "rejected"):
        violations.append("rejection_reason must be set iff rejected")

    if payment.amount <= 0:
        violations.append("amount must be positive")

    return violations
