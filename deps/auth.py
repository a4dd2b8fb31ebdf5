# deps/auth.py
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.directory import Caller

bearer = HTTPBearer(auto_error=False)


def get_current_caller(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Caller:
    if not creds:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    # must be "Bearer"
    if (creds.scheme or "").lower() != "bearer":
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    caller = request.app.state.directory.resolve_caller(creds.credentials)
    if caller is None:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    request.state.user_id = str(caller.user_id)
    return caller
