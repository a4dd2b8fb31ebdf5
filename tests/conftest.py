# tests/conftest.py

import os

# must be set before settings.py is imported anywhere
os.environ.setdefault("ENV", "test")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("JWT_SECRET", "test-secret-0123456789abcdef")
os.environ.setdefault("MM_MODE", "sandbox")

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from app.payments.memory import InMemoryPaymentStore
from app.payments.orchestrator import IssuanceOrchestrator
from app.providers.base import SettlementResult, StatusResult, map_status_text
from app.providers.gateway import ProviderGateway
from app.providers.mobile_money.routing import RoutingTable
from main import create_app
from security import create_access_token
from services.directory import Caller, DirectoryUser, subject_from_token
from services.metrics import reset_counters
from services import roles


DEFAULT_ROUTING = "VODACOM:74,75,76;TIGO:65,67,71,77;AIRTEL:68,69,78"


# ---------------------------
# Fake collaborators
# ---------------------------

class FakeDirectory:
    def __init__(self):
        self.users: Dict[uuid.UUID, DirectoryUser] = {}

    def add_user(
        self,
        *,
        role: str = roles.MEMBER,
        phone: Optional[str] = "0754123456",
        full_name: str = "Test User",
        is_active: bool = True,
    ) -> DirectoryUser:
        user = DirectoryUser(
            id=uuid.uuid4(),
            phone_number=phone,
            full_name=full_name,
            is_active=is_active,
            role=role,
        )
        self.users[user.id] = user
        return user

    def resolve_caller(self, credential: str) -> Optional[Caller]:
        user = self.users.get(subject_from_token(credential))
        if user is None or not user.is_active:
            return None
        return Caller(user_id=user.id, role=user.role or roles.MEMBER)

    def get_user(self, user_id: uuid.UUID) -> Optional[DirectoryUser]:
        return self.users.get(user_id)


class RecordingAudit:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.entries: List[Dict[str, Any]] = []

    def record(self, *, user_id, action, resource_type, resource_id, details=None) -> None:
        if self.fail:
            raise RuntimeError("audit sink down")
        self.entries.append(
            {
                "user_id": user_id,
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "details": details or {},
            }
        )

    def actions(self) -> List[str]:
        return [e["action"] for e in self.entries]


class FakeProvider:
    """Scriptable adapter; counts every call."""

    def __init__(self, name: str):
        self.name = name
        self.result: Optional[SettlementResult] = None
        self.exc: Optional[Exception] = None
        self.status: Optional[StatusResult] = None
        self.submitted: list = []
        self.status_calls: list = []

    def submit(self, request):
        self.submitted.append(request)
        if self.exc is not None:
            raise self.exc
        if self.result is not None:
            return self.result
        return SettlementResult.ok(self.name, f"{self.name}-REF-{len(self.submitted)}", raw={"fake": True})

    def check_status(self, provider_reference: str) -> StatusResult:
        self.status_calls.append(provider_reference)
        if self.status is not None:
            return self.status
        return StatusResult(status="PENDING", provider_reference=provider_reference)

    def parse_callback(self, payload: dict) -> StatusResult:
        status = map_status_text(payload.get("status"))
        return StatusResult(
            status=status,
            provider_reference=payload.get("ref"),
            raw=payload,
            error=payload.get("message") if status == "FAILED" else None,
        )

    @property
    def call_count(self) -> int:
        return len(self.submitted)


@dataclass
class World:
    directory: FakeDirectory
    audit: RecordingAudit
    store: InMemoryPaymentStore
    providers: Dict[str, FakeProvider]
    gateway: ProviderGateway
    orchestrator: IssuanceOrchestrator
    treasurer: Caller
    chairperson: Caller
    signatory: Caller
    second_signatory: Caller
    secretary: Caller
    member: Caller
    recipient: DirectoryUser
    users: Dict[str, DirectoryUser] = field(default_factory=dict)

    def token(self, caller: Caller) -> str:
        return create_access_token(str(caller.user_id))

    def headers(self, caller: Caller) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token(caller)}"}


def _caller(user: DirectoryUser) -> Caller:
    return Caller(user_id=user.id, role=user.role)


# ---------------------------
# Fixtures
# ---------------------------

@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
def routing() -> RoutingTable:
    return RoutingTable.from_config(DEFAULT_ROUTING, default_provider="VODACOM", country_code="255")


@pytest.fixture
def world(routing) -> World:
    directory = FakeDirectory()
    audit = RecordingAudit()
    store = InMemoryPaymentStore(directory)
    providers = {name: FakeProvider(name) for name in ("VODACOM", "TIGO", "AIRTEL")}
    gateway = ProviderGateway(providers, routing)
    orchestrator = IssuanceOrchestrator(store, gateway, directory, audit)

    users = {
        "treasurer": directory.add_user(role=roles.ADMIN_TREASURER, full_name="Treasurer"),
        "chairperson": directory.add_user(role=roles.ADMIN_CHAIRPERSON, full_name="Chairperson"),
        "signatory": directory.add_user(role=roles.ADMIN_SIGNATORY, full_name="Signatory"),
        "second_signatory": directory.add_user(role=roles.ADMIN_SIGNATORY, full_name="Second Signatory"),
        "secretary": directory.add_user(role=roles.ADMIN_SECRETARY, full_name="Secretary"),
        "member": directory.add_user(role=roles.MEMBER, full_name="Member One", phone="0754123456"),
    }

    return World(
        directory=directory,
        audit=audit,
        store=store,
        providers=providers,
        gateway=gateway,
        orchestrator=orchestrator,
        treasurer=_caller(users["treasurer"]),
        chairperson=_caller(users["chairperson"]),
        signatory=_caller(users["signatory"]),
        second_signatory=_caller(users["second_signatory"]),
        secretary=_caller(users["secretary"]),
        member=_caller(users["member"]),
        recipient=users["member"],
        users=users,
    )


@pytest.fixture
def client(world) -> TestClient:
    app = create_app(
        store=world.store,
        gateway=world.gateway,
        directory=world.directory,
        audit=world.audit,
    )
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def pending_payment(world):
    return world.orchestrator.initiate(
        world.treasurer,
        issued_to=world.recipient.id,
        amount="5000",
        purpose="Travel reimbursement",
    )
