"""
verify.py
---------
Purpose:
    Bearer-token check for the job and scoring endpoints.

Notes:
    - The token is a shared secret (SERVICE_API_TOKEN) held by the scheduler.
    - Provides `auth_dependency` for protected routes.
"""

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fitscore.config import settings

_security = HTTPBearer()


def verify_service_token(token: str) -> dict:
    expected = settings.SERVICE_API_TOKEN
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service token not configured",
        )
    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return {"sub": "service"}


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_service_token(token)
