from __future__ import annotations

import threading
import uuid

import pytest

from app.payments.errors import (
    AlreadyDecidedError,
    AuthorizationError,
    NotFoundError,
    SelfApprovalError,
    ValidationError,
)
from app.payments.state_machine import check_payment_invariants
from app.providers.base import SettlementResult, StatusResult
from services import audit_log
from services.metrics import counter_value


def _total_calls(world) -> int:
    return sum(p.call_count for p in world.providers.values())


# ---------- initiate ----------

def test_scenario_a_initiate_creates_pending(world, pending_payment):
    assert pending_payment.approval_status == "pending"
    assert pending_payment.payment_status == "unset"
    assert pending_payment.initiated_by == world.treasurer.user_id
    assert str(pending_payment.amount) == "5000.00"
    assert world.audit.actions() == [audit_log.PAYMENT_INITIATED]
    assert _total_calls(world) == 0


@pytest.mark.parametrize("who", ["signatory", "secretary", "member"])
def test_initiate_requires_financial_authority(world, who):
    with pytest.raises(AuthorizationError):
        world.orchestrator.initiate(
            getattr(world, who), issued_to=world.recipient.id, amount="10", purpose="x"
        )


def test_initiate_unknown_recipient(world):
    with pytest.raises(NotFoundError):
        world.orchestrator.initiate(world.chairperson, issued_to=uuid.uuid4(), amount="10", purpose="x")


# ---------- approve ----------

def test_scenario_b_approve_submits_and_marks_processing(world, pending_payment):
    world.providers["VODACOM"].result = SettlementResult.ok("VODACOM", "PR-1", raw={"ResponseCode": "0"})

    outcome = world.orchestrator.decide(world.signatory, pending_payment.id, "approve")

    payment = outcome.payment
    assert payment.approval_status == "approved"
    assert payment.approved_by == world.signatory.user_id
    assert payment.payment_status == "processing"
    assert payment.payment_provider == "VODACOM"
    assert payment.payment_provider_reference == "PR-1"
    assert outcome.settlement.success is True
    assert check_payment_invariants(payment) == []

    request = world.providers["VODACOM"].submitted[0]
    assert request.recipient_phone == "255754123456"
    assert request.transaction_reference == pending_payment.transaction_reference
    assert world.audit.actions() == [
        audit_log.PAYMENT_INITIATED,
        audit_log.PAYMENT_APPROVED,
        audit_log.PAYMENT_PROVIDER_INITIATED,
    ]


def test_scenario_c_provider_failure_keeps_approval(world, pending_payment):
    world.providers["VODACOM"].result = SettlementResult.failed("VODACOM", "insufficient balance")

    outcome = world.orchestrator.approve(world.signatory, pending_payment.id)

    assert outcome.payment.approval_status == "approved"
    assert outcome.payment.payment_status == "provider_failed"
    assert outcome.payment.provider_error == "insufficient balance"
    assert outcome.settlement.success is False
    assert world.store.get(pending_payment.id).approval_status == "approved"
    assert audit_log.PAYMENT_PROVIDER_FAILED in world.audit.actions()


def test_gateway_exception_becomes_provider_failed(world, pending_payment, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("network stack gone")

    monkeypatch.setattr(world.gateway, "submit", explode)

    outcome = world.orchestrator.approve(world.signatory, pending_payment.id)

    assert outcome.payment.approval_status == "approved"
    assert outcome.payment.payment_status == "provider_failed"
    assert "RuntimeError" in outcome.payment.provider_error


def test_accepted_without_reference_becomes_provider_failed(world, pending_payment):
    world.providers["VODACOM"].result = SettlementResult.ok("VODACOM", "")

    outcome = world.orchestrator.approve(world.signatory, pending_payment.id)

    assert outcome.payment.approval_status == "approved"
    assert outcome.payment.payment_status == "provider_failed"
    assert outcome.payment.provider_error == "Provider returned no reference"
    assert outcome.settlement.success is False
    assert world.audit.actions()[-1] == audit_log.PAYMENT_PROVIDER_FAILED


def test_unrecorded_settlement_outcome_is_flagged_in_audit(world, pending_payment, monkeypatch):
    world.providers["VODACOM"].result = SettlementResult.ok("VODACOM", "PR-LOST")

    def store_down(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(world.store, "record_settlement_outcome", store_down)

    outcome = world.orchestrator.approve(world.signatory, pending_payment.id)

    assert outcome.payment.approval_status == "approved"
    assert outcome.payment.payment_status == "unset"
    assert world.store.get(pending_payment.id).payment_status == "unset"
    last = world.audit.entries[-1]
    assert last["action"] == audit_log.PAYMENT_PROVIDER_INITIATED
    assert last["details"]["recorded"] is False


def test_recorded_settlement_outcome_has_no_flag(world, pending_payment):
    world.orchestrator.approve(world.signatory, pending_payment.id)
    assert "recorded" not in world.audit.entries[-1]["details"]


def test_ambiguous_route_becomes_provider_failed(world, pending_payment, monkeypatch):
    from app.providers.mobile_money.routing import RoutingTable

    monkeypatch.setattr(
        world.gateway,
        "routing",
        RoutingTable.from_config("TIGO:75;AIRTEL:75", default_provider="VODACOM", country_code="255"),
    )
    outcome = world.orchestrator.approve(world.signatory, pending_payment.id)
    assert outcome.payment.payment_status == "provider_failed"
    assert "several providers" in outcome.payment.provider_error
    assert _total_calls(world) == 0


def test_recipient_without_phone_is_provider_failed(world):
    no_phone = world.directory.add_user(phone=None)
    payment = world.orchestrator.initiate(world.treasurer, issued_to=no_phone.id, amount="10", purpose="x")
    outcome = world.orchestrator.approve(world.signatory, payment.id)
    assert outcome.payment.approval_status == "approved"
    assert outcome.payment.payment_status == "provider_failed"
    assert _total_calls(world) == 0


def test_routing_picks_provider_by_recipient_prefix(world):
    airtel_user = world.directory.add_user(phone="+255 688 123 456")
    payment = world.orchestrator.initiate(world.treasurer, issued_to=airtel_user.id, amount="10", purpose="x")
    world.orchestrator.approve(world.signatory, payment.id)
    assert world.providers["AIRTEL"].call_count == 1
    assert world.providers["AIRTEL"].submitted[0].recipient_phone == "255688123456"


# ---------- reject ----------

def test_scenario_d_reject_never_calls_provider(world, pending_payment):
    outcome = world.orchestrator.decide(world.signatory, pending_payment.id, "reject", "duplicate request")

    assert outcome.payment.approval_status == "rejected"
    assert outcome.payment.rejection_reason == "duplicate request"
    assert outcome.payment.payment_status == "unset"
    assert outcome.settlement is None
    assert _total_calls(world) == 0
    assert world.audit.actions()[-1] == audit_log.PAYMENT_REJECTED


def test_reject_requires_reason(world, pending_payment):
    with pytest.raises(ValidationError):
        world.orchestrator.reject(world.signatory, pending_payment.id, "   ")
    assert world.store.get(pending_payment.id).approval_status == "pending"


# ---------- decision failures ----------

def test_scenario_e_self_approval(world):
    # a signatory cannot initiate, so build the record directly through the store
    payment = world.store.create(
        initiated_by=world.signatory.user_id, issued_to=world.recipient.id, amount="10", purpose="x"
    )
    with pytest.raises(SelfApprovalError):
        world.orchestrator.approve(world.signatory, payment.id)
    assert world.store.get(payment.id).approval_status == "pending"
    assert _total_calls(world) == 0
    assert counter_value("payment_decisions_total", {"decision": "approve", "result": "self_approval"}) == 1


@pytest.mark.parametrize("first, second", [("approve", "reject"), ("reject", "approve"), ("approve", "approve")])
def test_second_decision_always_fails(world, pending_payment, first, second):
    world.orchestrator.decide(world.signatory, pending_payment.id, first, "reason")
    with pytest.raises(AlreadyDecidedError):
        world.orchestrator.decide(world.second_signatory, pending_payment.id, second, "reason")
    assert _total_calls(world) == (1 if first == "approve" else 0)


@pytest.mark.parametrize("who", ["treasurer", "chairperson", "secretary", "member"])
def test_decide_requires_signatory(world, pending_payment, who):
    with pytest.raises(AuthorizationError):
        world.orchestrator.approve(getattr(world, who), pending_payment.id)


def test_decide_unknown_payment(world):
    with pytest.raises(NotFoundError):
        world.orchestrator.approve(world.signatory, uuid.uuid4())


def test_concurrent_approvals_settle_once(world, pending_payment):
    barrier = threading.Barrier(2)
    results = []

    def run(caller):
        barrier.wait()
        try:
            world.orchestrator.approve(caller, pending_payment.id)
            results.append("ok")
        except AlreadyDecidedError:
            results.append("already_decided")

    threads = [threading.Thread(target=run, args=(c,)) for c in (world.signatory, world.second_signatory)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ["already_decided", "ok"]
    assert _total_calls(world) == 1


def test_audit_failure_does_not_change_outcome(world, pending_payment):
    world.audit.fail = True
    outcome = world.orchestrator.approve(world.signatory, pending_payment.id)
    assert outcome.payment.payment_status == "processing"


# ---------- settlement updates ----------

def _approved(world, pending_payment, reference="PR-9"):
    world.providers["VODACOM"].result = SettlementResult.ok("VODACOM", reference)
    return world.orchestrator.approve(world.signatory, pending_payment.id).payment


def test_successful_update_settles(world, pending_payment):
    _approved(world, pending_payment)
    update = world.orchestrator.apply_settlement_update(
        "VODACOM", StatusResult(status="SUCCESSFUL", provider_reference="PR-9")
    )
    assert update.applied is True
    assert update.payment.payment_status == "settled"
    assert world.audit.entries[-1]["action"] == audit_log.PAYMENT_SETTLED
    assert world.audit.entries[-1]["user_id"] == world.orchestrator.system_actor_id


def test_failed_update_marks_provider_failed(world, pending_payment):
    _approved(world, pending_payment)
    update = world.orchestrator.apply_settlement_update(
        "vodacom", StatusResult(status="FAILED", provider_reference="PR-9", error="expired")
    )
    assert update.payment.payment_status == "provider_failed"
    assert update.payment.provider_error == "expired"


def test_duplicate_and_unknown_updates_are_ignored(world, pending_payment):
    _approved(world, pending_payment)
    status = StatusResult(status="SUCCESSFUL", provider_reference="PR-9")
    assert world.orchestrator.apply_settlement_update("VODACOM", status).applied is True

    again = world.orchestrator.apply_settlement_update("VODACOM", status)
    assert again.applied is False
    assert again.reason == "already_final"

    unknown = world.orchestrator.apply_settlement_update(
        "VODACOM", StatusResult(status="SUCCESSFUL", provider_reference="nope")
    )
    assert unknown.reason == "unknown_reference"


def test_pending_and_mismatched_updates_are_ignored(world, pending_payment):
    _approved(world, pending_payment)
    pending = world.orchestrator.apply_settlement_update("VODACOM", StatusResult(status="PENDING", provider_reference="PR-9"))
    assert pending.reason == "not_final"

    mismatch = world.orchestrator.apply_settlement_update("TIGO", StatusResult(status="SUCCESSFUL", provider_reference="PR-9"))
    assert mismatch.reason == "provider_mismatch"
    assert world.store.get(pending_payment.id).payment_status == "processing"


def test_reconcile_queries_provider(world, pending_payment):
    _approved(world, pending_payment)
    world.providers["VODACOM"].status = StatusResult(status="SUCCESSFUL", provider_reference="PR-9")

    update = world.orchestrator.reconcile(world.secretary, pending_payment.id)

    assert world.providers["VODACOM"].status_calls == ["PR-9"]
    assert update.applied is True
    assert update.payment.payment_status == "settled"
    assert world.audit.entries[-1]["user_id"] == world.secretary.user_id


def test_reconcile_skips_non_processing(world, pending_payment):
    update = world.orchestrator.reconcile(world.treasurer, pending_payment.id)
    assert update.applied is False
    assert update.reason == "not_processing"

    with pytest.raises(AuthorizationError):
        world.orchestrator.reconcile(world.member, pending_payment.id)
