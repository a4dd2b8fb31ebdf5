# app/payments/validation.py
from __future__ import annotations

import secrets
import time
from decimal import Decimal, InvalidOperation
from typing import Any

from app.payments.errors import ValidationError

MAX_PURPOSE_LENGTH = 500
MAX_REFERENCE_ATTEMPTS = 5
# numeric(14, 2) column
MAX_AMOUNT = Decimal("999999999999.99")
REFERENCE_PREFIX = "MREDEO-ISSUED"


def validate_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("Amount must be a number")

    if not amount.is_finite():
        raise ValidationError("Amount must be a finite number")
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"Amount must be at most {MAX_AMOUNT}")
    if amount.as_tuple().exponent < -2:
        raise ValidationError("Amount supports at most 2 decimal places")

    try:
        return amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValidationError("Amount is out of range")


def validate_purpose(value: Any) -> str:
    purpose = (value or "").strip() if isinstance(value, str) or value is None else str(value).strip()
    if not purpose:
        raise ValidationError("Purpose is required")
    if len(purpose) > MAX_PURPOSE_LENGTH:
        raise ValidationError(f"Purpose must be at most {MAX_PURPOSE_LENGTH} characters")
    return purpose


def generate_transaction_reference() -> str:
    # epoch ms + 40 random bits; stores still retry on a unique-constraint hit
    millis = int(time.time() * 1000)
    return f"{REFERENCE_PREFIX}-{millis}-{secrets.token_hex(5).upper()}"
