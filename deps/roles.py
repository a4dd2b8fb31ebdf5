# deps/roles.py
from fastapi import Depends

from app.payments.errors import AuthorizationError
from deps.auth import get_current_caller
from services.directory import Caller
from services.roles import is_admin, is_financial_authority, is_signatory


def require_financial_authority(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not is_financial_authority(caller.role):
        raise AuthorizationError("Only the chairperson or treasurer can initiate payments")
    return caller


def require_signatory(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not is_signatory(caller.role):
        raise AuthorizationError("Only the signatory can perform this action")
    return caller


def require_admin(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not is_admin(caller.role):
        raise AuthorizationError("Admin role required")
    return caller
