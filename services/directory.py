"""
Identity & role directory.

Signup, login and session issuance live in the external identity provider.
This service only consumes two things from it: who is calling (bearer token
-> user id + role) and who a user is (phone number, name, active flag).
The PostgreSQL implementation reads the identity mirror tables
``users.users`` and ``users.user_roles``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from uuid import UUID

from psycopg2.extras import RealDictCursor

from db import get_conn
from security import decode_token

logger = logging.getLogger("mredeo.directory")


@dataclass(frozen=True)
class Caller:
    user_id: UUID
    role: str


@dataclass(frozen=True)
class DirectoryUser:
    id: UUID
    phone_number: Optional[str]
    full_name: Optional[str]
    is_active: bool
    role: Optional[str] = None


class Directory(Protocol):
    def resolve_caller(self, credential: str) -> Optional[Caller]: ...
    def get_user(self, user_id: UUID) -> Optional[DirectoryUser]: ...


def subject_from_token(credential: str) -> Optional[UUID]:
    payload = decode_token(credential)
    sub = payload.get("sub")
    if not sub:
        return None
    try:
        return UUID(str(sub))
    except ValueError:
        return None


class PostgresDirectory:
    def resolve_caller(self, credential: str) -> Optional[Caller]:
        user_id = subject_from_token(credential)
        if user_id is None:
            return None

        user = self.get_user(user_id)
        if user is None or not user.is_active:
            logger.info("caller rejected user_id=%s reason=%s", user_id, "missing" if user is None else "inactive")
            return None

        return Caller(user_id=user.id, role=(user.role or "member").strip().lower())

    def get_user(self, user_id: UUID) -> Optional[DirectoryUser]:
        with get_conn() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT
                      u.id,
                      u.phone_number,
                      u.full_name,
                      u.is_active,
                      r.role
                    FROM users.users u
                    LEFT JOIN users.user_roles r ON r.user_id = u.id
                    WHERE u.id = %s::uuid
                    """,
                    (str(user_id),),
                )
                row = cur.fetchone()

        if not row:
            return None

        return DirectoryUser(
            id=UUID(str(row["id"])),
            phone_number=row.get("phone_number"),
            full_name=row.get("full_name"),
            is_active=bool(row.get("is_active")),
            role=row.get("role"),
        )
