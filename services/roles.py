from __future__ import annotations

MEMBER = "member"
ADMIN_CHAIRPERSON = "admin_chairperson"
ADMIN_SECRETARY = "admin_secretary"
ADMIN_SIGNATORY = "admin_signatory"
ADMIN_TREASURER = "admin_treasurer"

ALL_ROLES = frozenset({MEMBER, ADMIN_CHAIRPERSON, ADMIN_SECRETARY, ADMIN_SIGNATORY, ADMIN_TREASURER})

# separation of duties: these two sets must stay disjoint
FINANCIAL_AUTHORITY_ROLES = frozenset({ADMIN_CHAIRPERSON, ADMIN_TREASURER})
SIGNATORY_ROLES = frozenset({ADMIN_SIGNATORY})

ADMIN_ROLES = frozenset({ADMIN_CHAIRPERSON, ADMIN_SECRETARY, ADMIN_SIGNATORY, ADMIN_TREASURER})


def _norm(role: str | None) -> str:
    return (role or "").strip().lower()


def is_financial_authority(role: str | None) -> bool:
    return _norm(role) in FINANCIAL_AUTHORITY_ROLES


def is_signatory(role: str | None) -> bool:
    return _norm(role) in SIGNATORY_ROLES


def is_admin(role: str | None) -> bool:
    return _norm(role) in ADMIN_ROLES
