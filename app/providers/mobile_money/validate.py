# app/providers/mobile_money/validate.py
from __future__ import annotations

import logging
from typing import Iterable

from settings import settings
from app.providers.mobile_money.config import (
    KNOWN_PROVIDERS,
    enabled_providers,
    is_strict_startup_validation,
    mm_mode,
    normalize_provider,
)
from app.providers.mobile_money.routing import RoutingTable

logger = logging.getLogger("mredeo.providers")


def _sorted_csv(items: Iterable[str]) -> str:
    return ", ".join(sorted(set(items)))


def _require(missing: list[str], *names: str) -> None:
    for n in names:
        if not (getattr(settings, n, "") or "").strip():
            missing.append(n)


def validate_mobile_money_startup() -> RoutingTable:
    """
    Parse the routing table and check provider configuration.

    In sandbox (non-strict) mode problems are logged and the service still
    starts. In real mode, or with MM_STRICT_STARTUP_VALIDATION, missing
    credentials or overlapping routing prefixes are fatal.
    """
    mode = mm_mode()
    strict = is_strict_startup_validation()
    enabled = sorted(enabled_providers())

    logger.info(
        "mobile_money startup check: mode=%s strict=%s enabled_providers=%s",
        mode,
        strict,
        ",".join(enabled) if enabled else "<none>",
    )

    if mode not in ("sandbox", "real"):
        raise RuntimeError(
            "Mobile money startup validation failed. "
            f"Invalid MM_MODE={mode!r}. Allowed: sandbox, real"
        )

    raw_names = [normalize_provider(p) for p in (settings.MM_ENABLED_PROVIDERS or "").split(",") if p.strip()]
    unknown = sorted(set(raw_names) - set(KNOWN_PROVIDERS))

    try:
        routing = RoutingTable.from_config(
            settings.MM_ROUTING_TABLE,
            default_provider=settings.MM_DEFAULT_PROVIDER,
            country_code=settings.MM_COUNTRY_CODE,
        )
    except ValueError as e:
        raise RuntimeError(f"Mobile money startup validation failed. {e}") from e

    unknown_routes = sorted(set(routing.prefixes) - set(KNOWN_PROVIDERS))
    if routing.default_provider not in KNOWN_PROVIDERS:
        unknown_routes.append(routing.default_provider)

    if mode == "sandbox" and not strict:
        if unknown or unknown_routes:
            logger.warning("mobile_money unknown providers ignored: %s", _sorted_csv(unknown + unknown_routes))
        return routing

    if not enabled:
        raise RuntimeError("Mobile money startup validation failed. MM_ENABLED_PROVIDERS is empty.")

    if unknown or unknown_routes:
        raise RuntimeError(
            "Mobile money startup validation failed. Unknown providers: "
            f"{_sorted_csv(unknown + unknown_routes)}. Allowed: {_sorted_csv(KNOWN_PROVIDERS)}"
        )

    if routing.overlaps:
        raise RuntimeError(
            "Mobile money startup validation failed. Overlapping routing prefixes: "
            + _sorted_csv(routing.overlaps)
        )

    missing: list[str] = []
    prefix_kind = "REAL" if mode == "real" else "SANDBOX"
    for p in enabled:
        _require(missing, f"{p}_{prefix_kind}_BASE_URL", f"{p}_API_KEY", f"{p}_CALLBACK_SECRET")
        if p == "VODACOM":
            _require(missing, "VODACOM_BUSINESS_CODE", "VODACOM_PASSWORD", "VODACOM_PAYBILL_NUMBER")

    if missing:
        raise RuntimeError(
            "Mobile money startup validation failed. "
            f"mode={mode} enabled_providers={_sorted_csv(enabled)} "
            "Missing required env vars: " + _sorted_csv(missing)
        )

    return routing
