# app/providers/mock.py
from __future__ import annotations

from typing import Any

from app.providers.base import SettlementRequest, SettlementResult, StatusResult, map_status_text


class MockProvider:
    """
    Sandbox provider, used for any enabled provider that has no base URL
    configured while MM_MODE=sandbox.

    Deterministic: recipient numbers ending in "000" fail, everything else
    is accepted as processing and reported SUCCESSFUL on status checks.
    """

    def __init__(self, name: str, *, succeed: bool = True):
        self.name = name
        self.succeed = succeed

    def submit(self, request: SettlementRequest) -> SettlementResult:
        if not self.succeed or request.recipient_phone.endswith("000"):
            return SettlementResult.failed(self.name, "Sandbox decline", raw={"mock": True})
        return SettlementResult.ok(
            self.name,
            f"MOCK-{self.name}-{request.transaction_reference}",
            raw={"mock": True, "http_status": 200},
        )

    def check_status(self, provider_reference: str) -> StatusResult:
        if not self.succeed:
            return StatusResult(status="FAILED", provider_reference=provider_reference, raw={"mock": True}, error="Sandbox decline")
        return StatusResult(status="SUCCESSFUL", provider_reference=provider_reference, raw={"mock": True})

    def parse_callback(self, payload: dict[str, Any]) -> StatusResult:
        reference = (payload or {}).get("provider_reference")
        if not reference:
            return StatusResult(status="UNKNOWN", raw=payload, error="Missing provider_reference")
        status = map_status_text(payload.get("status"))
        return StatusResult(
            status=status,
            provider_reference=str(reference),
            raw=payload,
            error=payload.get("message") if status == "FAILED" else None,
        )
