# app/providers/mobile_money/airtel.py
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

NAME = "AIRTEL"


class AirtelProvider:
    """Airtel Money merchant payments."""

    name = NAME

    def __init__(self, http: HttpClient, config: Optional[ProviderConfig] = None):
        self.http = http
        self.config = config or provider_config(NAME)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "X-Country": self.config.country,
            "X-Currency": self.config.currency,
        }

    def submit(self, request: SettlementRequest) -> SettlementResult:
        cfg = self.config
        if not cfg.enabled:
            return SettlementResult.failed(NAME, "Airtel payment provider is disabled")
        if not cfg.base_url:
            return SettlementResult.failed(NAME, "AIRTEL base URL not configured")

        amount = format_amount(request.amount)
        body = {
            "reference": request.transaction_reference,
            "subscriber": {
                "country": cfg.country,
                "currency": cfg.currency,
                "msisdn": request.recipient_phone,
            },
            "transaction": {
                "amount": amount,
                "country": cfg.country,
                "currency": cfg.currency,
                "id": request.transaction_reference,
            },
            "description": f"MREDEO Payment: {request.purpose}",
            "callback_url": cfg.callback_url,
            "initiator": request.initiator,
        }

        try:
            resp = self.http.post(f"{cfg.base_url}/merchant/v1/payments/", headers=self._headers(), json_body=body)
        except httpx.TimeoutException:
            return SettlementResult.failed(NAME, "Gateway timeout", raw={"retryable": True})
        except httpx.HTTPError as e:
            return SettlementResult.failed(NAME, f"Provider error: {e}", raw={"retryable": True})

        data = resp.json if isinstance(resp.json, dict) else {}
        status = data.get("status") if isinstance(data.get("status"), dict) else {}
        if str(status.get("code")) == "200":
            transaction = ((data.get("data") or {}).get("transaction") or {})
            reference = str(transaction.get("id") or "").strip()
            if not reference:
                return SettlementResult.failed(NAME, "Provider returned no reference", raw=data)
            return SettlementResult.ok(NAME, reference, raw=data)

        return SettlementResult.failed(
            NAME,
            status.get("message") or f"HTTP {resp.status_code}",
            raw={"http_status": resp.status_code, "body": resp.json, "retryable": is_retryable_http(resp.status_code)},
        )

    def check_status(self, provider_reference: str) -> StatusResult:
        cfg = self.config
        if not cfg.base_url:
            return StatusResult(status="UNKNOWN", provider_reference=provider_reference, error="AIRTEL base URL not configured")

        try:
            resp = self.http.get(f"{cfg.base_url}/standard/v1/payments/{provider_reference}", headers=self._headers())
        except httpx.HTTPError as e:
            return StatusResult(status="UNKNOWN", provider_reference=provider_reference, error=f"Provider error: {e}")

        if resp.status_code == 200 and isinstance(resp.json, dict):
            transaction = ((resp.json.get("data") or {}).get("transaction") or {})
            return self._from_transaction(provider_reference, transaction, resp.json)

        return StatusResult(
            status="UNKNOWN",
            provider_reference=provider_reference,
            raw={"http_status": resp.status_code, "body": resp.json},
            error=f"HTTP {resp.status_code}",
        )

    def parse_callback(self, payload: dict[str, Any]) -> StatusResult:
        transaction = (payload or {}).get("transaction") or {}
        reference = transaction.get("id")
        if not reference:
            return StatusResult(status="UNKNOWN", raw=payload, error="Missing transaction.id")
        return self._from_transaction(str(reference), transaction, payload)

    @staticmethod
    def _from_transaction(reference: str, transaction: dict[str, Any], raw: dict[str, Any]) -> StatusResult:
        # TS = success, TF = failed, TIP/TA = in progress
        status = map_status_text(transaction.get("status_code") or transaction.get("status"))
        error = (transaction.get("message") or "Airtel transaction failed") if status == "FAILED" else None
        return StatusResult(status=status, provider_reference=reference, raw=raw, error=error)
