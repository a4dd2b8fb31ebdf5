# schemas.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# -------- ENVELOPE --------
class Envelope(BaseModel):
    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None
    error: Optional[str] = None


def _dump(envelope: Envelope) -> dict[str, Any]:
    # drop unset top-level keys only; nulls inside data are meaningful
    return {k: v for k, v in envelope.model_dump().items() if v is not None}


def ok(data: Any = None, message: Optional[str] = None) -> dict[str, Any]:
    return _dump(Envelope(success=True, message=message, data=data))


def fail(error: str, message: str, data: Any = None) -> dict[str, Any]:
    return _dump(Envelope(success=False, message=message, data=data, error=error))


# -------- PAYMENTS --------
class InitiatePaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    issued_to: UUID = Field(alias="issuedTo")
    amount: Decimal
    purpose: str = Field(min_length=1, max_length=500)


class RejectPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason", max_length=1000)

