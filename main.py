# main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.payments.errors import PaymentError
from app.payments.memory import InMemoryPaymentStore
from app.payments.model import PaymentStore
from app.payments.orchestrator import IssuanceOrchestrator
from app.payments.repository import PostgresPaymentStore
from app.providers.gateway import ProviderGateway
from app.providers.mobile_money.factory import build_providers
from app.providers.mobile_money.http import HttpClient
from app.providers.mobile_money.validate import validate_mobile_money_startup
from db import close_pool, init_pool
from middleware import RequestContextMiddleware
from routes.callbacks import router as callbacks_router
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.payments import router as payments_router
from schemas import fail
from services.audit_log import AuditSink, LoggingAuditLog, PostgresAuditLog
from services.directory import Directory, PostgresDirectory
from services.observability import configure_logging
from settings import settings, validate_env_settings

logger = logging.getLogger("mredeo")


def _default_store(directory: Directory) -> PaymentStore:
    if settings.STORE_BACKEND == "memory":
        logger.warning("STORE_BACKEND=memory: payments are not durable")
        return InMemoryPaymentStore(directory)
    return PostgresPaymentStore(directory)


def _default_audit() -> AuditSink:
    if settings.STORE_BACKEND == "memory":
        return LoggingAuditLog()
    return PostgresAuditLog()


def create_app(
    *,
    store: Optional[PaymentStore] = None,
    gateway: Optional[ProviderGateway] = None,
    directory: Optional[Directory] = None,
    audit: Optional[AuditSink] = None,
) -> FastAPI:
    configure_logging(settings.LOG_LEVEL)
    validate_env_settings()

    http_client: Optional[HttpClient] = None
    if gateway is None:
        routing = validate_mobile_money_startup()
        http_client = HttpClient(timeout_s=settings.MM_HTTP_TIMEOUT_S)
        gateway = ProviderGateway(build_providers(http_client), routing)

    directory = directory or PostgresDirectory()
    store = store or _default_store(directory)
    audit = audit or _default_audit()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if (settings.DATABASE_URL or "").strip():
            init_pool()
        logger.info("startup env=%s store=%s mm_mode=%s", settings.ENV, type(store).__name__, settings.MM_MODE)
        try:
            yield
        finally:
            if http_client is not None:
                http_client.close()
            close_pool()

    app = FastAPI(title="MREDEO Payments API", version="1.0.0", lifespan=lifespan)

    app.state.directory = directory
    app.state.orchestrator = IssuanceOrchestrator(store, gateway, directory, audit)

    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------
    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(callbacks_router)
    app.include_router(payments_router)

    # -----------------------------
    # ERROR ENVELOPE
    # -----------------------------
    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        return JSONResponse(
            status_code=exc.status_code,
            content=fail(exc.code, exc.message, exc.details or None),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = exc.detail if isinstance(exc.detail, str) else "HTTP_ERROR"
        return JSONResponse(
            status_code=exc.status_code,
            content=fail(code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")}
            for e in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=fail("VALIDATION_ERROR", "Invalid request", {"errors": errors}),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content=fail("INTERNAL_ERROR", "Internal server error"),
        )

    return app


app = create_app()
