# app/providers/mobile_money/tigo.py
from __future__ import annotations

from typing import Any, Optional

import httpx

from app.providers.base import (
    SettlementRequest,
    SettlementResult,
    StatusResult,
    format_amount,
    map_status_text,
)
from app.providers.mobile_money.config import ProviderConfig, provider_config
from app.providers.mobile_money.http import HttpClient, is_retryable_http

NAME = "TIGO"


class TigoProvider:
    """Tigo Pesa."""

    name = NAME

    def __init__(self, http: HttpClient, config: Optional[ProviderConfig] = None):
        self.http = http
        self.config = config or provider_config(NAME)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def submit(self, request: SettlementRequest) -> SettlementResult:
        cfg = self.config
        if not cfg.enabled:
            return SettlementResult.failed(NAME, "Tigo payment provider is disabled")
        if not cfg.base_url:
            return SettlementResult.failed(NAME, "TIGO base URL not configured")

        body = {
            "amount": format_amount(request.amount),
            "phone": request.recipient_phone,
            "reference": request.transaction_reference,
            "description": f"MREDEO Payment: {request.purpose}",
            "callback_url": cfg.callback_url,
            "initiator": request.initiator,
        }

        try:
            resp = self.http.post(f"{cfg.base_url}/v1/payments/request", headers=self._headers(), json_body=body)
        except httpx.TimeoutException:
            return SettlementResult.failed(NAME, "Gateway timeout", raw={"retryable": True})
        except httpx.HTTPError as e:
            return SettlementResult.failed(NAME, f"Provider error: {e}", raw={"retryable": True})

        data = resp.json if isinstance(resp.json, dict) else {}
        if resp.status_code in (200, 201, 202) and str(data.get("status") or "").lower() == "success":
            reference = str(data.get("transaction_id") or "").strip()
            if not reference:
                return SettlementResult.failed(NAME, "Provider returned no reference", raw=data)
            return SettlementResult.ok(NAME, reference, raw=data)

        return SettlementResult.failed(
            NAME,
            data.get("message") or data.get("error") or f"HTTP {resp.status_code}",
            raw={"http_status": resp.status_code, "body": resp.json, "retryable": is_retryable_http(resp.status_code)},
        )

    def check_status(self, provider_reference: str) -> StatusResult:
        cfg = self.config
        if not cfg.base_url:
            return StatusResult(status="UNKNOWN", provider_reference=provider_reference, error="TIGO base URL not configured")

        try:
            resp = self.http.get(f"{cfg.base_url}/v1/payments/{provider_reference}", headers=self._headers())
        except httpx.HTTPError as e:
            return StatusResult(status="UNKNOWN", provider_reference=provider_reference, error=f"Provider error: {e}")

        if resp.status_code == 200 and isinstance(resp.json, dict):
            return self._from_body(provider_reference, resp.json)

        return StatusResult(
            status="UNKNOWN",
            provider_reference=provider_reference,
            raw={"http_status": resp.status_code, "body": resp.json},
            error=f"HTTP {resp.status_code}",
        )

    def parse_callback(self, payload: dict[str, Any]) -> StatusResult:
        reference = (payload or {}).get("transaction_id")
        if not reference:
            return StatusResult(status="UNKNOWN", raw=payload, error="Missing transaction_id")
        return self._from_body(str(reference), payload)

    @staticmethod
    def _from_body(reference: str, body: dict[str, Any]) -> StatusResult:
        status = map_status_text(body.get("status"))
        error = (body.get("message") or str(body.get("status") or "")) if status == "FAILED" else None
        return StatusResult(status=status, provider_reference=reference, raw=body, error=error)
