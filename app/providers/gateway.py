# app/providers/gateway.py
from __future__ import annotations

import logging
from typing import Any, Mapping

from app.payments.errors import ProviderFailure
from app.providers.base import SettlementProvider, SettlementRequest, SettlementResult, StatusResult
from app.providers.mobile_money.config import normalize_provider
from app.providers.mobile_money.routing import RoutingTable
from services.metrics import increment_settlement_attempt
from services.redaction import mask_phone

logger = logging.getLogger("mredeo.providers")


class ProviderGateway:
    """
    Uniform entry point to the mobile money adapters.

    `submit`, `check_status` and `parse_callback` never raise: transport
    errors, adapter bugs and unknown providers all come back as failed
    results.
    """

    def __init__(self, providers: Mapping[str, SettlementProvider], routing: RoutingTable):
        self.providers = {normalize_provider(k): v for k, v in providers.items()}
        self.routing = routing

    def route(self, phone: str) -> str:
        return self.routing.route(phone)

    def normalize(self, phone: str) -> str:
        return self.routing.normalize(phone)

    def _provider(self, provider_id: str) -> SettlementProvider:
        provider = self.providers.get(normalize_provider(provider_id))
        if provider is None:
            raise ProviderFailure(f"Unsupported payment provider: {provider_id}")
        return provider

    def submit(self, provider_id: str, request: SettlementRequest) -> SettlementResult:
        name = normalize_provider(provider_id)
        try:
            result = self._provider(name).submit(request)
        except ProviderFailure as e:
            result = SettlementResult.failed(name, e.message)
        except Exception as e:
            logger.exception(
                "settlement submit crashed provider=%s reference=%s",
                name,
                request.transaction_reference,
            )
            result = SettlementResult.failed(name, f"Unexpected provider error: {type(e).__name__}")

        increment_settlement_attempt(name, "success" if result.success else "failure")
        logger.info(
            "settlement submit provider=%s reference=%s phone=%s success=%s provider_reference=%s error=%s",
            name,
            request.transaction_reference,
            mask_phone(request.recipient_phone),
            result.success,
            result.provider_reference,
            result.error,
        )
        return result

    def check_status(self, provider_id: str, provider_reference: str) -> StatusResult:
        name = normalize_provider(provider_id)
        try:
            return self._provider(name).check_status(provider_reference)
        except ProviderFailure as e:
            return StatusResult(status="UNKNOWN", provider_reference=provider_reference, error=e.message)
        except Exception as e:
            logger.exception("settlement status check crashed provider=%s ref=%s", name, provider_reference)
            return StatusResult(
                status="UNKNOWN",
                provider_reference=provider_reference,
                error=f"Unexpected provider error: {type(e).__name__}",
            )

    def parse_callback(self, provider_id: str, payload: dict[str, Any]) -> StatusResult:
        name = normalize_provider(provider_id)
        try:
            return self._provider(name).parse_callback(payload)
        except ProviderFailure as e:
            return StatusResult(status="UNKNOWN", raw=payload, error=e.message)
        except Exception as e:
            logger.exception("callback parse crashed provider=%s", name)
            return StatusResult(status="UNKNOWN", raw=payload, error=f"Unparseable callback: {type(e).__name__}")
