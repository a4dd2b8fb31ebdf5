# app/providers/mobile_money/vodacom.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.providers.base import SettlementRequest, SettlementResult, StatusResult, format_amount
from app.providers.mobile_money.config import ProviderConfig, provider_config, vodacom_credentials
from app.providers.mobile_money.http import HttpClient, is_retryable_http

NAME = "VODACOM"


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")


class VodacomProvider:
    """Vodacom M-Pesa (STK push)."""

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
            return SettlementResult.failed(NAME, "Vodacom payment provider is disabled")
        if not cfg.base_url:
            return SettlementResult.failed(NAME, "VODACOM base URL not configured")

        creds = vodacom_credentials()
        body = {
            "BusinessShortCode": creds.business_code,
            "Password": creds.password,
            "Timestamp": _timestamp(),
            "TransactionType": "CustomerPayBillOnline",
            "Amount": format_amount(request.amount),
            "PartyA": creds.paybill_number,
            "PartyB": request.recipient_phone,
            "PhoneNumber": request.recipient_phone,
            "CallBackURL": cfg.callback_url,
            "AccountReference": request.transaction_reference,
            "TransactionDesc": f"MREDEO Payment: {request.purpose}",
            "Initiator": request.initiator,
        }
        url = f"{cfg.base_url}/mpesa/stkpush/v1/processrequest"

        try:
            resp = self.http.post(url, headers=self._headers(), json_body=body)
        except httpx.TimeoutException:
            return SettlementResult.failed(NAME, "Gateway timeout", raw={"retryable": True})
        except httpx.HTTPError as e:
            return SettlementResult.failed(NAME, f"Provider error: {e}", raw={"retryable": True})

        data = resp.json if isinstance(resp.json, dict) else {}
        if resp.status_code in (200, 201) and str(data.get("ResponseCode")) == "0":
            reference = str(data.get("CheckoutRequestID") or "").strip()
            if not reference:
                return SettlementResult.failed(NAME, "Provider returned no reference", raw=data)
            return SettlementResult.ok(NAME, reference, raw=data)

        return SettlementResult.failed(
            NAME,
            data.get("ResponseDescription") or data.get("errorMessage") or f"HTTP {resp.status_code}",
            raw={"http_status": resp.status_code, "body": resp.json, "retryable": is_retryable_http(resp.status_code)},
        )

    def check_status(self, provider_reference: str) -> StatusResult:
        cfg = self.config
        if not cfg.base_url:
            return StatusResult(status="UNKNOWN", provider_reference=provider_reference, error="VODACOM base URL not configured")

        creds = vodacom_credentials()
        body = {
            "BusinessShortCode": creds.business_code,
            "Password": creds.password,
            "Timestamp": _timestamp(),
            "CheckoutRequestID": provider_reference,
        }
        url = f"{cfg.base_url}/mpesa/stkpushquery/v1/query"

        try:
            resp = self.http.post(url, headers=self._headers(), json_body=body)
        except httpx.HTTPError as e:
            return StatusResult(status="UNKNOWN", provider_reference=provider_reference, error=f"Provider error: {e}")

        data = resp.json if isinstance(resp.json, dict) else {}
        if resp.status_code == 200 and "ResultCode" in data:
            return self._result_from_code(provider_reference, data.get("ResultCode"), data.get("ResultDesc"), data)
        if resp.status_code == 200:
            return StatusResult(status="PENDING", provider_reference=provider_reference, raw=data)

        return StatusResult(
            status="UNKNOWN",
            provider_reference=provider_reference,
            raw={"http_status": resp.status_code, "body": resp.json},
            error=f"HTTP {resp.status_code}",
        )

    def parse_callback(self, payload: dict[str, Any]) -> StatusResult:
        cb = ((payload or {}).get("Body") or {}).get("stkCallback") or {}
        reference = cb.get("CheckoutRequestID")
        if not reference:
            return StatusResult(status="UNKNOWN", raw=payload, error="Missing CheckoutRequestID")
        return self._result_from_code(str(reference), cb.get("ResultCode"), cb.get("ResultDesc"), payload)

    @staticmethod
    def _result_from_code(reference: str, code: Any, desc: Any, raw: dict[str, Any]) -> StatusResult:
        if code is None:
            return StatusResult(status="PENDING", provider_reference=reference, raw=raw)
        if str(code) == "0":
            return StatusResult(status="SUCCESSFUL", provider_reference=reference, raw=raw)
        return StatusResult(
            status="FAILED",
            provider_reference=reference,
            raw=raw,
            error=str(desc or f"ResultCode {code}"),
        )
