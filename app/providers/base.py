# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Protocol, Literal

ProviderStatus = Literal["PENDING", "SUCCESSFUL", "FAILED", "UNKNOWN"]


@dataclass(frozen=True)
class SettlementRequest:
    amount: Decimal
    recipient_phone: str
    recipient_name: Optional[str]
    purpose: str
    transaction_reference: str
    initiator: str


@dataclass(frozen=True)
class SettlementResult:
    success: bool
    provider: Optional[str] = None
    provider_reference: Optional[str] = None
    raw: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, provider: str, provider_reference: str, raw: Optional[dict[str, Any]] = None) -> "SettlementResult":
        return cls(success=True, provider=provider, provider_reference=provider_reference, raw=raw)

    @classmethod
    def failed(cls, provider: Optional[str], error: str, raw: Optional[dict[str, Any]] = None) -> "SettlementResult":
        return cls(success=False, provider=provider, error=error, raw=raw)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "provider": self.provider,
            "provider_reference": self.provider_reference,
            "error": self.error,
        }


@dataclass(frozen=True)
class StatusResult:
    status: ProviderStatus
    provider_reference: Optional[str] = None
    raw: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.status in ("SUCCESSFUL", "FAILED")


class SettlementProvider(Protocol):
    name: str

    def submit(self, request: SettlementRequest) -> SettlementResult: ...
    def check_status(self, provider_reference: str) -> StatusResult: ...
    def parse_callback(self, payload: dict[str, Any]) -> StatusResult: ...


def format_amount(amount: Decimal) -> str:
    return f"{Decimal(amount):.2f}"


def map_status_text(value: Any) -> ProviderStatus:
    st = str(value or "").strip().upper()
    if st in ("SUCCESS", "SUCCESSFUL", "COMPLETED", "CONFIRMED", "TS"):
        return "SUCCESSFUL"
    if st in ("FAILED", "FAILURE", "REJECTED", "CANCELLED", "CANCELED", "EXPIRED", "TF"):
        return "FAILED"
    if st in ("PENDING", "PROCESSING", "IN_PROGRESS", "TIP", "TA"):
        return "PENDING"
    return "UNKNOWN"
