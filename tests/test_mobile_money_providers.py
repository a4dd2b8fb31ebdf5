from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from app.providers.base import SettlementRequest
from app.providers.mobile_money.airtel import AirtelProvider
from app.providers.mobile_money.config import ProviderConfig
from app.providers.mobile_money.http import HttpResponse
from app.providers.mobile_money.tigo import TigoProvider
from app.providers.mobile_money.vodacom import VodacomProvider
from app.providers.mock import MockProvider
from settings import settings


class FakeHttp:
    def __init__(self, response: HttpResponse | None = None, exc: Exception | None = None):
        self.response = response
        self.exc = exc
        self.calls = []

    def _call(self, method, url, headers, json_body=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json_body})
        if self.exc is not None:
            raise self.exc
        return self.response

    def post(self, url, *, headers, json_body=None):
        return self._call("POST", url, headers, json_body)

    def get(self, url, *, headers):
        return self._call("GET", url, headers)


def _resp(status_code: int, payload: dict | None) -> HttpResponse:
    return HttpResponse(status_code=status_code, json=payload, text=str(payload))


def _cfg(name: str, *, enabled: bool = True, base_url: str = "https://sandbox.example") -> ProviderConfig:
    return ProviderConfig(
        name=name,
        mode="sandbox",
        enabled=enabled,
        base_url=base_url,
        api_key="key-123",
        callback_url=f"https://api.example/v1/payments/callbacks/{name.lower()}",
        country="TZ",
        currency="TZS",
    )


def _request(**overrides) -> SettlementRequest:
    args = dict(
        amount=Decimal("5000.00"),
        recipient_phone="255754123456",
        recipient_name="Member One",
        purpose="Travel reimbursement",
        transaction_reference="MREDEO-ISSUED-1700000000000-ABCDEF0123",
        initiator="signatory-1",
    )
    args.update(overrides)
    return SettlementRequest(**args)


@pytest.fixture
def vodacom_creds(monkeypatch):
    monkeypatch.setattr(settings, "VODACOM_BUSINESS_CODE", "174379", raising=False)
    monkeypatch.setattr(settings, "VODACOM_PASSWORD", "pw", raising=False)
    monkeypatch.setattr(settings, "VODACOM_PAYBILL_NUMBER", "888888", raising=False)


# ---------- Vodacom ----------

def test_vodacom_submit_success(vodacom_creds):
    http = FakeHttp(_resp(200, {"ResponseCode": "0", "CheckoutRequestID": "ws_CO_123"}))
    result = VodacomProvider(http, _cfg("VODACOM")).submit(_request())

    assert result.success is True
    assert result.provider == "VODACOM"
    assert result.provider_reference == "ws_CO_123"
    call = http.calls[0]
    assert call["url"] == "https://sandbox.example/mpesa/stkpush/v1/processrequest"
    assert call["headers"]["Authorization"] == "Bearer key-123"
    body = call["json"]
    assert body["Amount"] == "5000.00"
    assert body["PhoneNumber"] == "255754123456"
    assert body["PartyA"] == "888888"
    assert body["AccountReference"] == "MREDEO-ISSUED-1700000000000-ABCDEF0123"
    assert body["TransactionDesc"] == "MREDEO Payment: Travel reimbursement"
    assert body["CallBackURL"].endswith("/callbacks/vodacom")


def test_vodacom_submit_failure_code(vodacom_creds):
    http = FakeHttp(_resp(200, {"ResponseCode": "1", "ResponseDescription": "insufficient balance"}))
    result = VodacomProvider(http, _cfg("VODACOM")).submit(_request())
    assert result.success is False
    assert result.error == "insufficient balance"
    assert result.raw["retryable"] is False


def test_vodacom_timeout_is_a_failure_result(vodacom_creds):
    http = FakeHttp(exc=httpx.ReadTimeout("timed out"))
    result = VodacomProvider(http, _cfg("VODACOM")).submit(_request())
    assert result.success is False
    assert result.error == "Gateway timeout"
    assert result.raw["retryable"] is True


def test_vodacom_disabled(vodacom_creds):
    http = FakeHttp(_resp(200, {"ResponseCode": "0"}))
    result = VodacomProvider(http, _cfg("VODACOM", enabled=False)).submit(_request())
    assert result.success is False
    assert "disabled" in result.error
    assert http.calls == []


def test_vodacom_status_and_callback(vodacom_creds):
    provider = VodacomProvider(FakeHttp(_resp(200, {"ResultCode": "0", "ResultDesc": "ok"})), _cfg("VODACOM"))
    assert provider.check_status("ws_CO_123").status == "SUCCESSFUL"

    provider.http = FakeHttp(_resp(200, {"ResultCode": "1032", "ResultDesc": "Request cancelled by user"}))
    status = provider.check_status("ws_CO_123")
    assert status.status == "FAILED"
    assert status.error == "Request cancelled by user"

    provider.http = FakeHttp(_resp(200, {"ResponseCode": "0"}))
    assert provider.check_status("ws_CO_123").status == "PENDING"

    cb = provider.parse_callback(
        {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_123", "ResultCode": 0, "ResultDesc": "ok"}}}
    )
    assert cb.status == "SUCCESSFUL"
    assert cb.provider_reference == "ws_CO_123"
    assert provider.parse_callback({}).status == "UNKNOWN"


# ---------- Tigo ----------

def test_tigo_submit_success():
    http = FakeHttp(_resp(200, {"status": "success", "transaction_id": "TG-1"}))
    result = TigoProvider(http, _cfg("TIGO")).submit(_request(recipient_phone="255655123456"))
    assert result.success is True
    assert result.provider_reference == "TG-1"
    call = http.calls[0]
    assert call["url"] == "https://sandbox.example/v1/payments/request"
    assert call["json"]["phone"] == "255655123456"
    assert call["json"]["amount"] == "5000.00"


def test_tigo_submit_failure_and_server_error():
    result = TigoProvider(FakeHttp(_resp(200, {"status": "failed", "message": "invalid msisdn"})), _cfg("TIGO")).submit(_request())
    assert result.success is False
    assert result.error == "invalid msisdn"

    result = TigoProvider(FakeHttp(_resp(503, None)), _cfg("TIGO")).submit(_request())
    assert result.success is False
    assert result.error == "HTTP 503"
    assert result.raw["retryable"] is True


def test_tigo_status_and_callback():
    provider = TigoProvider(FakeHttp(_resp(200, {"status": "COMPLETED"})), _cfg("TIGO"))
    assert provider.check_status("TG-1").status == "SUCCESSFUL"
    assert provider.http.calls[0]["method"] == "GET"
    assert provider.http.calls[0]["url"] == "https://sandbox.example/v1/payments/TG-1"

    cb = provider.parse_callback({"transaction_id": "TG-1", "status": "FAILED", "message": "declined"})
    assert cb.status == "FAILED"
    assert cb.error == "declined"


def test_tigo_missing_base_url():
    result = TigoProvider(FakeHttp(), _cfg("TIGO", base_url="")).submit(_request())
    assert result.success is False
    assert "base URL" in result.error


# ---------- Airtel ----------

def test_airtel_submit_success():
    http = FakeHttp(_resp(200, {"status": {"code": "200"}, "data": {"transaction": {"id": "AT-1"}}}))
    result = AirtelProvider(http, _cfg("AIRTEL")).submit(_request(recipient_phone="255688123456"))
    assert result.success is True
    assert result.provider_reference == "AT-1"
    call = http.calls[0]
    assert call["url"] == "https://sandbox.example/merchant/v1/payments/"
    assert call["headers"]["X-Country"] == "TZ"
    assert call["headers"]["X-Currency"] == "TZS"
    assert call["json"]["subscriber"]["msisdn"] == "255688123456"
    assert call["json"]["transaction"]["id"] == "MREDEO-ISSUED-1700000000000-ABCDEF0123"


def test_airtel_submit_failure():
    http = FakeHttp(_resp(400, {"status": {"code": "400", "message": "Invalid subscriber"}}))
    result = AirtelProvider(http, _cfg("AIRTEL")).submit(_request())
    assert result.success is False
    assert result.error == "Invalid subscriber"


def test_airtel_connect_error_is_a_failure_result():
    http = FakeHttp(exc=httpx.ConnectError("refused"))
    result = AirtelProvider(http, _cfg("AIRTEL")).submit(_request())
    assert result.success is False
    assert result.error.startswith("Provider error")


def test_airtel_status_codes():
    provider = AirtelProvider(FakeHttp(_resp(200, {"data": {"transaction": {"status": "TS"}}})), _cfg("AIRTEL"))
    assert provider.check_status("AT-1").status == "SUCCESSFUL"
    provider.http = FakeHttp(_resp(200, {"data": {"transaction": {"status": "TIP"}}}))
    assert provider.check_status("AT-1").status == "PENDING"
    provider.http = FakeHttp(_resp(500, None))
    assert provider.check_status("AT-1").status == "UNKNOWN"

    cb = provider.parse_callback({"transaction": {"id": "AT-1", "status_code": "TF", "message": "Insufficient funds"}})
    assert cb.status == "FAILED"
    assert cb.error == "Insufficient funds"


# ---------- Mock ----------

def test_mock_provider_is_deterministic():
    mock = MockProvider("TIGO")
    ok = mock.submit(_request())
    assert ok.success is True
    assert ok.provider_reference == "MOCK-TIGO-MREDEO-ISSUED-1700000000000-ABCDEF0123"
    assert mock.submit(_request(recipient_phone="255754123000")).success is False
    assert mock.check_status(ok.provider_reference).status == "SUCCESSFUL"


def test_vodacom_accepted_without_reference_is_a_failure(vodacom_creds):
    http = FakeHttp(_resp(200, {"ResponseCode": "0", "CheckoutRequestID": ""}))
    result = VodacomProvider(http, _cfg("VODACOM")).submit(_request())
    assert result.success is False
    assert result.error == "Provider returned no reference"
    assert result.provider_reference is None


def test_tigo_accepted_without_reference_is_a_failure():
    http = FakeHttp(_resp(200, {"status": "success"}))
    result = TigoProvider(http, _cfg("TIGO")).submit(_request())
    assert result.success is False
    assert result.error == "Provider returned no reference"


def test_airtel_accepted_without_reference_is_a_failure():
    http = FakeHttp(_resp(200, {"status": {"code": "200"}, "data": {"transaction": {}}}))
    result = AirtelProvider(http, _cfg("AIRTEL")).submit(_request())
    assert result.success is False
    assert result.error == "Provider returned no reference"
