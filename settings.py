# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from uuid import UUID
from typing import Literal


DEFAULT_JWT_SECRET = "dev-secret-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # -----------------------
    # DB / store
    # -----------------------
    DATABASE_URL: str = ""
    STORE_BACKEND: Literal["postgres", "memory"] = "postgres"

    # actor recorded on audit entries for provider callbacks
    SYSTEM_ACTOR_ID: UUID = Field(default=UUID("00000000-0000-0000-0000-000000000001"))

    # -----------------------
    # JWT (minted by the identity provider, verified here)
    # -----------------------
    JWT_SECRET: str = Field(default=DEFAULT_JWT_SECRET, min_length=16)
    JWT_ALG: str = Field(default="HS256")
    JWT_ACCESS_MINUTES: int = Field(default=60)

    # -----------------------
    # Payments
    # -----------------------
    PAYMENTS_MAX_PAGE_LIMIT: int = 100
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # -----------------------
    # Mobile Money (Mode Switch)
    # -----------------------
    MM_MODE: Literal["sandbox", "real"] = "sandbox"
    MM_STRICT_STARTUP_VALIDATION: bool = False
    MM_ENABLED_PROVIDERS: str = "VODACOM,TIGO,AIRTEL"

    MM_HTTP_TIMEOUT_S: float = 30.0

    MM_COUNTRY: str = "TZ"
    MM_COUNTRY_CODE: str = "255"
    MM_CURRENCY: str = "TZS"

    # "<PROVIDER>:<prefix>,<prefix>;..." matched against the national number
    MM_ROUTING_TABLE: str = "VODACOM:74,75,76;TIGO:65,67,71,77;AIRTEL:68,69,78"
    MM_DEFAULT_PROVIDER: str = "VODACOM"

    # -----------------------
    # VODACOM M-PESA (sandbox/real)
    # -----------------------
    VODACOM_ENABLED: bool = True
    VODACOM_SANDBOX_BASE_URL: str = ""
    VODACOM_REAL_BASE_URL: str = ""
    VODACOM_API_KEY: str = ""
    VODACOM_BUSINESS_CODE: str = ""
    VODACOM_PASSWORD: str = ""
    VODACOM_PAYBILL_NUMBER: str = ""
    VODACOM_CALLBACK_SECRET: str = ""

    # -----------------------
    # TIGO PESA (sandbox/real)
    # -----------------------
    TIGO_ENABLED: bool = True
    TIGO_SANDBOX_BASE_URL: str = ""
    TIGO_REAL_BASE_URL: str = ""
    TIGO_API_KEY: str = ""
    TIGO_CALLBACK_SECRET: str = ""

    # -----------------------
    # AIRTEL MONEY (sandbox/real)
    # -----------------------
    AIRTEL_ENABLED: bool = True
    AIRTEL_SANDBOX_BASE_URL: str = ""
    AIRTEL_REAL_BASE_URL: str = ""
    AIRTEL_API_KEY: str = ""
    AIRTEL_CALLBACK_SECRET: str = ""


settings = Settings()


def _is_strict_env() -> bool:
    return (settings.ENV or "").strip().lower() in ("staging", "prod", "production")


def validate_env_settings() -> None:
    """
    Fail fast on misconfiguration outside dev.
    Dev/test environments are allowed to run on defaults.
    """
    if not _is_strict_env():
        return

    missing: list[str] = []

    if not (settings.DATABASE_URL or "").strip():
        missing.append("DATABASE_URL")
    if settings.JWT_SECRET == DEFAULT_JWT_SECRET:
        missing.append("JWT_SECRET")
    if settings.STORE_BACKEND != "postgres":
        missing.append("STORE_BACKEND=postgres")

    enabled = {p.strip().upper() for p in (settings.MM_ENABLED_PROVIDERS or "").split(",") if p.strip()}
    for provider in sorted(enabled):
        if not getattr(settings, f"{provider}_ENABLED", False):
            continue
        secret_name = f"{provider}_CALLBACK_SECRET"
        if not (getattr(settings, secret_name, "") or "").strip():
            missing.append(secret_name)

    if missing:
        raise RuntimeError(
            f"Environment validation failed for ENV={settings.ENV}. "
            "Missing or unsafe settings: " + ", ".join(missing)
        )
