# app/payments/model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional, Protocol
from uuid import UUID


ApprovalStatus = Literal["pending", "approved", "rejected"]
PaymentStatus = Literal["unset", "processing", "settled", "provider_failed"]
Decision = Literal["approve", "reject"]

APPROVAL_STATUSES = ("pending", "approved", "rejected")
PAYMENT_STATUSES = ("unset", "processing", "settled", "provider_failed")
DECISION_TO_STATUS = {"approve": "approved", "reject": "rejected"}


@dataclass(frozen=True)
class IssuedPayment:
    id: UUID
    initiated_by: UUID
    issued_to: UUID
    amount: Decimal
    purpose: str
    transaction_reference: str
    approval_status: str
    approved_by: Optional[UUID]
    approved_at: Optional[datetime]
    rejection_reason: Optional[str]
    payment_status: str
    payment_provider: Optional[str]
    payment_provider_reference: Optional[str]
    provider_error: Optional[str]
    provider_response: Optional[dict[str, Any]]
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "initiated_by": str(self.initiated_by),
            "issued_to": str(self.issued_to),
            "amount": str(self.amount),
            "purpose": self.purpose,
            "transaction_reference": self.transaction_reference,
            "approval_status": self.approval_status,
            "approved_by": str(self.approved_by) if self.approved_by else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejection_reason": self.rejection_reason,
            "payment_status": self.payment_status,
            "payment_provider": self.payment_provider,
            "payment_provider_reference": self.payment_provider_reference,
            "provider_error": self.provider_error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class SettlementOutcome:
    """What the orchestrator learned from one settlement event."""

    payment_status: str
    provider: Optional[str] = None
    provider_reference: Optional[str] = None
    provider_error: Optional[str] = None
    provider_response: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class PaymentFilter:
    approval_status: Optional[str] = None
    payment_status: Optional[str] = None
    initiated_by: Optional[UUID] = None
    approved_by: Optional[UUID] = None
    issued_to: Optional[UUID] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    def __post_init__(self):
        # bounds without an offset are read as UTC, like created_at
        for name in ("created_from", "created_to"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                object.__setattr__(self, name, value.replace(tzinfo=timezone.utc))


@dataclass(frozen=True)
class PaymentPage:
    items: list[IssuedPayment] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [p.to_dict() for p in self.items],
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
        }


class PaymentStore(Protocol):
    def create(self, *, initiated_by: UUID, issued_to: UUID, amount: Any, purpose: str) -> IssuedPayment: ...
    def get(self, payment_id: UUID) -> IssuedPayment: ...
    def get_by_provider_reference(self, provider_reference: str) -> Optional[IssuedPayment]: ...
    def list_pending(self, *, page: int, limit: int) -> PaymentPage: ...
    def list_by_filter(self, flt: PaymentFilter, *, page: int, limit: int) -> PaymentPage: ...
    def record_decision(
        self,
        payment_id: UUID,
        *,
        approved_by: UUID,
        decision: str,
        rejection_reason: Optional[str] = None,
    ) -> IssuedPayment: ...
    def record_settlement_outcome(self, payment_id: UUID, outcome: SettlementOutcome) -> IssuedPayment: ...
