# app/payments/orchestrator.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from settings import settings
from app.payments.errors import AuthorizationError, InvalidTransition, PaymentError, ProviderFailure
from app.payments.model import IssuedPayment, PaymentStore, SettlementOutcome
from app.providers.base import SettlementRequest, SettlementResult, StatusResult
from app.providers.gateway import ProviderGateway
from app.providers.mobile_money.config import normalize_provider
from services import audit_log
from services.audit_log import AuditSink
from services.directory import Caller, Directory
from services.metrics import increment_payment_decision
from services.roles import is_admin, is_financial_authority, is_signatory

logger = logging.getLogger("mredeo.payments")

RESOURCE_TYPE = "issued_payment"


@dataclass(frozen=True)
class DecisionOutcome:
    """
    Result of approve/reject. The approval and the settlement attempt are
    reported separately: `settlement` is None for rejections and carries the
    provider failure (if any) for approvals.
    """

    payment: IssuedPayment
    settlement: Optional[SettlementResult] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment": self.payment.to_dict(),
            "settlement": self.settlement.to_dict() if self.settlement else None,
        }


@dataclass(frozen=True)
class SettlementUpdate:
    applied: bool
    reason: str
    payment: Optional[IssuedPayment] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "reason": self.reason,
            "payment": self.payment.to_dict() if self.payment else None,
        }


class IssuanceOrchestrator:
    def __init__(
        self,
        store: PaymentStore,
        gateway: ProviderGateway,
        directory: Directory,
        audit: AuditSink,
        *,
        system_actor_id: Optional[UUID] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.directory = directory
        self.audit = audit
        self.system_actor_id = system_actor_id or settings.SYSTEM_ACTOR_ID

    # ---------- initiation ----------

    def initiate(self, initiator: Caller, *, issued_to: UUID, amount: Any, purpose: str) -> IssuedPayment:
        if not is_financial_authority(initiator.role):
            logger.info("initiate denied actor=%s role=%s", initiator.user_id, initiator.role)
            raise AuthorizationError("Only the chairperson or treasurer can initiate payments")

        payment = self.store.create(
            initiated_by=initiator.user_id,
            issued_to=issued_to,
            amount=amount,
            purpose=purpose,
        )
        logger.info(
            "payment initiated id=%s actor=%s reference=%s amount=%s",
            payment.id,
            initiator.user_id,
            payment.transaction_reference,
            payment.amount,
        )
        self._audit(
            initiator.user_id,
            audit_log.PAYMENT_INITIATED,
            payment,
            {
                "issued_to": str(payment.issued_to),
                "amount": str(payment.amount),
                "transaction_reference": payment.transaction_reference,
            },
        )
        return payment

    # ---------- decision ----------

    def approve(self, approver: Caller, payment_id: UUID) -> DecisionOutcome:
        return self.decide(approver, payment_id, "approve")

    def reject(self, approver: Caller, payment_id: UUID, rejection_reason: Optional[str]) -> DecisionOutcome:
        return self.decide(approver, payment_id, "reject", rejection_reason)

    def decide(
        self,
        approver: Caller,
        payment_id: UUID,
        decision: str,
        rejection_reason: Optional[str] = None,
    ) -> DecisionOutcome:
        if not is_signatory(approver.role):
            increment_payment_decision(decision, "forbidden")
            logger.info("decision denied payment_id=%s actor=%s role=%s", payment_id, approver.user_id, approver.role)
            raise AuthorizationError("Only the signatory can approve or reject payments")

        try:
            self.store.get(payment_id)
            payment = self.store.record_decision(
                payment_id,
                approved_by=approver.user_id,
                decision=decision,
                rejection_reason=rejection_reason,
            )
        except PaymentError as e:
            increment_payment_decision(decision, e.code.lower())
            logger.info(
                "decision refused payment_id=%s actor=%s action=%s code=%s",
                payment_id,
                approver.user_id,
                decision,
                e.code,
            )
            raise

        increment_payment_decision(decision, "ok")
        logger.info("payment %s id=%s actor=%s", payment.approval_status, payment.id, approver.user_id)

        if decision == "reject":
            self._audit(
                approver.user_id,
                audit_log.PAYMENT_REJECTED,
                payment,
                {"rejection_reason": payment.rejection_reason},
            )
            return DecisionOutcome(payment=payment, settlement=None)

        self._audit(
            approver.user_id,
            audit_log.PAYMENT_APPROVED,
            payment,
            {"transaction_reference": payment.transaction_reference},
        )
        return self._settle(approver, payment)

    # ---------- settlement ----------

    def _settle(self, approver: Caller, payment: IssuedPayment) -> DecisionOutcome:
        # The approval is committed at this point; nothing below may undo it.
        try:
            result = self._submit(approver, payment)
        except Exception as e:
            logger.exception("settlement attempt crashed payment_id=%s actor=%s", payment.id, approver.user_id)
            result = SettlementResult.failed(None, f"Settlement error: {type(e).__name__}")

        if result.success and not (result.provider_reference or "").strip():
            # nothing to reconcile or match callbacks against
            result = SettlementResult.failed(result.provider, "Provider returned no reference", raw=result.raw)

        if result.success:
            outcome = SettlementOutcome(
                payment_status="processing",
                provider=result.provider,
                provider_reference=result.provider_reference,
                provider_response=result.raw,
            )
            action = audit_log.PAYMENT_PROVIDER_INITIATED
        else:
            outcome = SettlementOutcome(
                payment_status="provider_failed",
                provider=result.provider,
                provider_error=result.error or "Settlement failed",
                provider_response=result.raw,
            )
            action = audit_log.PAYMENT_PROVIDER_FAILED

        recorded = True
        try:
            payment = self.store.record_settlement_outcome(payment.id, outcome)
        except Exception:
            recorded = False
            logger.exception(
                "settlement outcome not recorded payment_id=%s status=%s provider=%s",
                payment.id,
                outcome.payment_status,
                outcome.provider,
            )

        if not result.success:
            logger.warning(
                "settlement failed payment_id=%s actor=%s provider=%s error=%s",
                payment.id,
                approver.user_id,
                result.provider,
                result.error,
            )

        details = result.to_dict()
        if not recorded:
            details["recorded"] = False
        self._audit(approver.user_id, action, payment, details)
        return DecisionOutcome(payment=payment, settlement=result)

    def _submit(self, approver: Caller, payment: IssuedPayment) -> SettlementResult:
        recipient = self.directory.get_user(payment.issued_to)
        if recipient is None or not (recipient.phone_number or "").strip():
            return SettlementResult.failed(None, "Recipient phone number is not available")

        try:
            provider = self.gateway.route(recipient.phone_number)
            msisdn = self.gateway.normalize(recipient.phone_number)
        except ProviderFailure as e:
            return SettlementResult.failed(None, e.message, raw={"code": e.code, **e.details})

        request = SettlementRequest(
            amount=payment.amount,
            recipient_phone=msisdn,
            recipient_name=recipient.full_name,
            purpose=payment.purpose,
            transaction_reference=payment.transaction_reference,
            initiator=str(approver.user_id),
        )
        return self.gateway.submit(provider, request)

    # ---------- callbacks / reconciliation ----------

    def apply_settlement_update(
        self,
        provider_id: str,
        status: StatusResult,
        *,
        actor_id: Optional[UUID] = None,
    ) -> SettlementUpdate:
        """
        Move a `processing` payment to `settled` or `provider_failed`.

        Anything else (unknown reference, non-final status, payment already
        out of `processing`) is ignored, so replays and late events are safe.
        """
        reference = status.provider_reference
        if not reference:
            return SettlementUpdate(applied=False, reason="missing_reference")

        payment = self.store.get_by_provider_reference(reference)
        if payment is None:
            logger.info("settlement update for unknown reference provider=%s ref=%s", provider_id, reference)
            return SettlementUpdate(applied=False, reason="unknown_reference")

        if payment.payment_provider and payment.payment_provider != normalize_provider(provider_id):
            logger.warning(
                "settlement update provider mismatch payment_id=%s expected=%s got=%s",
                payment.id,
                payment.payment_provider,
                provider_id,
            )
            return SettlementUpdate(applied=False, reason="provider_mismatch", payment=payment)

        if not status.is_final:
            return SettlementUpdate(applied=False, reason="not_final", payment=payment)

        if payment.payment_status != "processing":
            return SettlementUpdate(applied=False, reason="already_final", payment=payment)

        if status.status == "SUCCESSFUL":
            outcome = SettlementOutcome(
                payment_status="settled",
                provider=payment.payment_provider,
                provider_reference=reference,
                provider_response=status.raw,
            )
            action = audit_log.PAYMENT_SETTLED
        else:
            outcome = SettlementOutcome(
                payment_status="provider_failed",
                provider=payment.payment_provider,
                provider_reference=reference,
                provider_error=status.error or "Provider reported failure",
                provider_response=status.raw,
            )
            action = audit_log.PAYMENT_PROVIDER_FAILED

        try:
            updated = self.store.record_settlement_outcome(payment.id, outcome)
        except InvalidTransition:
            # another callback won the race
            return SettlementUpdate(applied=False, reason="already_final", payment=self.store.get(payment.id))

        logger.info(
            "settlement update applied payment_id=%s provider=%s status=%s",
            updated.id,
            provider_id,
            updated.payment_status,
        )
        self._audit(
            actor_id or self.system_actor_id,
            action,
            updated,
            {"provider": payment.payment_provider, "provider_reference": reference, "error": status.error},
        )
        return SettlementUpdate(applied=True, reason=updated.payment_status, payment=updated)

    def reconcile(self, actor: Caller, payment_id: UUID) -> SettlementUpdate:
        if not is_admin(actor.role):
            raise AuthorizationError("Only admins can reconcile payments")

        payment = self.store.get(payment_id)
        if payment.payment_status != "processing" or not payment.payment_provider_reference:
            return SettlementUpdate(applied=False, reason="not_processing", payment=payment)

        status = self.gateway.check_status(payment.payment_provider or "", payment.payment_provider_reference)
        logger.info(
            "reconcile payment_id=%s actor=%s provider_status=%s error=%s",
            payment.id,
            actor.user_id,
            status.status,
            status.error,
        )
        if not status.provider_reference:
            status = StatusResult(
                status=status.status,
                provider_reference=payment.payment_provider_reference,
                raw=status.raw,
                error=status.error,
            )
        return self.apply_settlement_update(payment.payment_provider or "", status, actor_id=actor.user_id)

    # ---------- audit ----------

    def _audit(self, user_id: UUID, action: str, payment: IssuedPayment, details: dict[str, Any]) -> None:
        try:
            self.audit.record(
                user_id=user_id,
                action=action,
                resource_type=RESOURCE_TYPE,
                resource_id=str(payment.id),
                details=details,
            )
        except Exception:
            logger.warning("audit sink failed action=%s payment_id=%s", action, payment.id, exc_info=True)
