from __future__ import annotations

import logging
from typing import Any, Optional, Protocol
from uuid import UUID

from psycopg2.extras import Json

from db import get_conn
from services.observability import get_request_id

logger = logging.getLogger("mredeo.audit")

PAYMENT_INITIATED = "PAYMENT_INITIATED"
PAYMENT_APPROVED = "PAYMENT_APPROVED"
PAYMENT_REJECTED = "PAYMENT_REJECTED"
PAYMENT_PROVIDER_INITIATED = "PAYMENT_PROVIDER_INITIATED"
PAYMENT_PROVIDER_FAILED = "PAYMENT_PROVIDER_FAILED"
PAYMENT_SETTLED = "PAYMENT_SETTLED"


class AuditSink(Protocol):
    def record(
        self,
        *,
        user_id: UUID | str,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        details: Optional[dict[str, Any]] = None,
    ) -> None: ...


def write_audit_log(
    conn,
    *,
    actor_user_id: str,
    action: str,
    resource_type: str,
    target_id: str | None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.audit_log (actor_user_id, action, resource_type, target_id, metadata, request_id)
            VALUES (%s::uuid, %s, %s, %s, %s::jsonb, %s);
            """,
            (
                actor_user_id,
                action,
                resource_type,
                target_id,
                Json(metadata or {}),
                request_id,
            ),
        )


class PostgresAuditLog:
    """
    Best-effort sink: every entry gets its own connection/transaction so a
    failing insert can never roll back the payment write it describes.
    """

    def record(
        self,
        *,
        user_id: UUID | str,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            with get_conn() as conn:
                write_audit_log(
                    conn,
                    actor_user_id=str(user_id),
                    action=action,
                    resource_type=resource_type,
                    target_id=resource_id,
                    metadata=details,
                    request_id=get_request_id(),
                )
        except Exception:
            logger.warning(
                "audit write failed action=%s resource_type=%s resource_id=%s",
                action,
                resource_type,
                resource_id,
                exc_info=True,
            )


class LoggingAuditLog:
    """Audit sink for STORE_BACKEND=memory: entries go to the log only."""

    def record(
        self,
        *,
        user_id: UUID | str,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        logger.info(
            "audit action=%s actor=%s resource_type=%s resource_id=%s details=%s",
            action,
            user_id,
            resource_type,
            resource_id,
            details or {},
        )
