from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.payments.model import PaymentFilter
from settings import settings

logger = logging.getLogger("mredeo.http")

router = APIRouter(tags=["health"])


def _check_store(request: Request) -> tuple[bool, str | None]:
    try:
        request.app.state.orchestrator.store.list_by_filter(PaymentFilter(), page=1, limit=1)
        return True, None
    except Exception as exc:
        logger.warning("health store check failed: %s", type(exc).__name__)
        return False, f"{type(exc).__name__}: {exc}"


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/health")
def health(request: Request):
    store_ok, store_error = _check_store(request)
    body = {
        "success": store_ok,
        "data": {
            "env": settings.ENV,
            "store_backend": settings.STORE_BACKEND,
            "mm_mode": settings.MM_MODE,
            "version": os.getenv("APP_VERSION", "1.0.0"),
            "git_sha": _resolve_git_sha(),
            "store_ok": store_ok,
            "store_error": store_error,
        },
    }
    return JSONResponse(status_code=200 if store_ok else 503, content=body)
