# app/providers/mobile_money/factory.py
from __future__ import annotations

import logging
from typing import Optional

from settings import settings
from app.providers.base import SettlementProvider
from app.providers.mock import MockProvider
from app.providers.mobile_money.config import KNOWN_PROVIDERS, mm_mode, normalize_provider, provider_config
from app.providers.mobile_money.http import HttpClient

logger = logging.getLogger("mredeo.providers")


def get_provider(name: str, http: HttpClient) -> Optional[SettlementProvider]:
    key = normalize_provider(name)
    if key not in KNOWN_PROVIDERS:
        return None

    cfg = provider_config(key)
    if not cfg.base_url and mm_mode() == "sandbox":
        return MockProvider(key)

    if key == "VODACOM":
        from app.providers.mobile_money.vodacom import VodacomProvider
        return VodacomProvider(http, cfg)

    if key == "TIGO":
        from app.providers.mobile_money.tigo import TigoProvider
        return TigoProvider(http, cfg)

    from app.providers.mobile_money.airtel import AirtelProvider
    return AirtelProvider(http, cfg)


def build_providers(http: Optional[HttpClient] = None) -> dict[str, SettlementProvider]:
    """
    One adapter per known provider. Disabled providers are still built so
    that routing to them yields a clean "disabled" failure.
    """
    client = http or HttpClient(timeout_s=settings.MM_HTTP_TIMEOUT_S)
    providers: dict[str, SettlementProvider] = {}
    for name in KNOWN_PROVIDERS:
        provider = get_provider(name, client)
        if provider is not None:
            providers[name] = provider
    logger.info(
        "settlement providers built mode=%s providers=%s",
        mm_mode(),
        ",".join(f"{k}:{type(v).__name__}" for k, v in providers.items()),
    )
    return providers
