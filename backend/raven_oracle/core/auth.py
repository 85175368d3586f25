import secrets

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from raven_oracle.core.context import get_context


security = HTTPBasic(auto_error=False)


def require_operator(request: Request, credentials: HTTPBasicCredentials | None = Depends(security)) -> None:
    settings = get_context(request).settings
    if not settings.operator_auth_enabled:
        return

    if settings.operator_username is None or settings.operator_password is None:
        raise HTTPException(status_code=503, detail="Operator credentials are not configured")

    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Basic"},
        )

    username_ok = secrets.compare_digest(credentials.username, settings.operator_username)
    password_ok = secrets.compare_digest(credentials.password, settings.operator_password)

    if not (username_ok and password_ok):
        raise HTTPException(
            status_code=401,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
