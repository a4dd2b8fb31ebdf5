# routes/callbacks.py
from __future__ import annotations

import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from app.payments.orchestrator import IssuanceOrchestrator
from app.providers.mobile_money.config import KNOWN_PROVIDERS, callback_secret, normalize_provider
from schemas import ok
from services.metrics import increment_provider_callback
from services.redaction import redact_text

logger = logging.getLogger("mredeo.callbacks")

router = APIRouter(prefix="/v1/payments/callbacks", tags=["callbacks"])

SIGNATURE_HEADER = "X-Signature"


def _verify_signature(*, raw: bytes, signature_header: str | None, secret: str | None) -> tuple[bool, str | None]:
    if not secret or not secret.strip():
        return False, "CALLBACK_SECRET_NOT_CONFIGURED"

    if not signature_header or not signature_header.strip():
        return False, "MISSING_SIGNATURE"

    sig = signature_header.strip()
    if sig.lower().startswith("sha256="):
        sig = sig.split("=", 1)[1].strip()

    expected = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, sig):
        return False, "INVALID_SIGNATURE"

    return True, None


@router.post("/{provider}")
async def provider_callback(provider: str, req: Request):
    name = normalize_provider(provider)
    if name not in KNOWN_PROVIDERS:
        raise HTTPException(status_code=404, detail="UNKNOWN_PROVIDER")

    raw = await req.body()
    sig_ok, sig_err = _verify_signature(
        raw=raw,
        signature_header=req.headers.get(SIGNATURE_HEADER),
        secret=callback_secret(name),
    )

    if sig_err == "CALLBACK_SECRET_NOT_CONFIGURED":
        # deployment misconfig, not the caller's fault
        logger.error("callback rejected provider=%s reason=%s", name, sig_err)
        increment_provider_callback(name, signature_valid=False, applied=False)
        raise HTTPException(status_code=500, detail=sig_err)

    if not sig_ok:
        logger.warning("callback rejected provider=%s reason=%s", name, sig_err)
        increment_provider_callback(name, signature_valid=False, applied=False)
        raise HTTPException(status_code=401, detail=sig_err)

    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError):
        increment_provider_callback(name, signature_valid=True, applied=False)
        raise HTTPException(status_code=400, detail="INVALID_JSON")
    if not isinstance(payload, dict):
        increment_provider_callback(name, signature_valid=True, applied=False)
        raise HTTPException(status_code=400, detail="INVALID_JSON")

    orchestrator: IssuanceOrchestrator = req.app.state.orchestrator
    status = orchestrator.gateway.parse_callback(name, payload)
    update = await run_in_threadpool(orchestrator.apply_settlement_update, name, status)

    increment_provider_callback(name, signature_valid=True, applied=update.applied)
    logger.info(
        "callback provider=%s ref=%s status=%s applied=%s reason=%s",
        name,
        redact_text(status.provider_reference or ""),
        status.status,
        update.applied,
        update.reason,
    )
    return ok(
        {"provider": name, "status": status.status, "applied": update.applied, "reason": update.reason},
        "Callback applied" if update.applied else "Callback ignored",
    )
