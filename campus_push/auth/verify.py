"""
verify.py
---------
Purpose:
    Bearer-token guard for the admin notification endpoints.

Notes:
    - The token is the static ADMIN_API_TOKEN from settings.
    - With no token configured every admin request is refused.
    - Provides `admin_dependency` for protected routes.
"""

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from campus_push.config import settings

_security = HTTPBearer(auto_error=False)


def verify_admin_token(token: str | None) -> None:
    expected = settings.ADMIN_API_TOKEN
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )
    if not token or not hmac.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def admin_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> None:
    verify_admin_token(credentials.credentials if credentials else None)
