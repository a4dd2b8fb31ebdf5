# app/payments/errors.py
from __future__ import annotations

from typing import Any, Optional


class PaymentError(Exception):
    status_code = 400
    code = "PAYMENT_ERROR"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.code
        self.details = details
        super().__init__(self.message)


class ValidationError(PaymentError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(PaymentError):
    status_code = 404
    code = "NOT_FOUND"


class SelfApprovalError(PaymentError):
    status_code = 400
    code = "SELF_APPROVAL"

    def __init__(self, message: str = "Initiator cannot approve or reject their own payment", **details: Any):
        super().__init__(message, **details)


class AlreadyDecidedError(PaymentError):
    status_code = 400
    code = "ALREADY_DECIDED"

    def __init__(self, current_status: str, message: Optional[str] = None):
        self.current_status = current_status
        super().__init__(
            message or f"Payment has already been {current_status}",
            current_status=current_status,
        )


class AuthorizationError(PaymentError):
    status_code = 403
    code = "FORBIDDEN"


class InvalidTransition(PaymentError):
    status_code = 409
    code = "INVALID_TRANSITION"


class ProviderFailure(PaymentError):
    """Raised inside the provider layer; converted to a failed SettlementResult at the gateway."""

    status_code = 502
    code = "PROVIDER_FAILURE"


class AmbiguousRouteError(ProviderFailure):
    code = "AMBIGUOUS_ROUTE"
