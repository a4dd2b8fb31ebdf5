
# app/providers/mobile_money/config.py
from __future__ import annotations

from dataclasses import dataclass

from settings import settings

KNOWN_PROVIDERS = ("VODACOM", "TIGO", "AIRTEL")


def mm_mode() -> str:
    return (settings.MM_MODE or "sandbox").strip().lower()


def is_strict_startup_validation() -> bool:
    return bool(settings.MM_STRICT_STARTUP_VALIDATION)


def normalize_provider(value: str) -> str:
    v = (value or "").strip().upper().replace("-", "_").replace(" ", "_")
    if v in ("MPESA", "M_PESA"):
        return "VODACOM"
    if v in ("TIGOPESA", "TIGO_PESA"):
        return "TIGO"
    if v in ("AIRTEL_MONEY",):
        return "AIRTEL"
    return v


def _raw_enabled_providers() -> set[str]:
    raw = settings.MM_ENABLED_PROVIDERS or ""
    return {normalize_provider(p) for p in raw.split(",") if p.strip()}


def provider_enabled(provider: str) -> bool:
    normalized = normalize_provider(provider)
    if normalized not in _raw_enabled_providers():
        return False
    return bool(getattr(settings, f"{normalized}_ENABLED", False))


def enabled_providers() -> set[str]:
    return {p for p in _raw_enabled_providers() if provider_enabled(p)}


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    mode: str  # "sandbox" | "real"
    enabled: bool
    base_url: str
    api_key: str
    callback_url: str
    country: str
    currency: str


def provider_config(provider: str) -> ProviderConfig:
    name = normalize_provider(provider)
    mode = mm_mode()
    if mode == "real":
        base = getattr(settings, f"{name}_REAL_BASE_URL", "")
    else:
        base = getattr(settings, f"{name}_SANDBOX_BASE_URL", "")

    public = (settings.PUBLIC_BASE_URL or "").strip().rstrip("/")
    return ProviderConfig(
        name=name,
        mode=mode,
        enabled=provider_enabled(name),
        base_url=(base or "").strip().rstrip("/"),
        api_key=(getattr(settings, f"{name}_API_KEY", "") or "").strip(),
        callback_url=f"{public}/v1/payments/callbacks/{name.lower()}" if public else "",
        country=(settings.MM_COUNTRY or "TZ").strip().upper(),
        currency=(settings.MM_CURRENCY or "TZS").strip().upper(),
    )


@dataclass(frozen=True)
class VodacomCredentials:
    business_code: str
    password: str
    paybill_number: str


def vodacom_credentials() -> VodacomCredentials:
    return VodacomCredentials(
        business_code=(settings.VODACOM_BUSINESS_CODE or "").strip(),
        password=(settings.VODACOM_PASSWORD or "").strip(),
        paybill_number=(settings.VODACOM_PAYBILL_NUMBER or "").strip(),
    )


def callback_secret(provider: str) -> str:
    return (getattr(settings, f"{normalize_provider(provider)}_CALLBACK_SECRET", "") or "").strip()
