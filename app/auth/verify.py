"""
verify.py
---------
Purpose:
    Caller identity for the freelancer portal and service-to-service calls.

Notes:
    - Portal sessions are HS256 JWTs signed with SESSION_SECRET; the caller
      is identified by the `email` claim.
    - Provides `auth_dependency` for protected routes.
    - Warehouse routes use a shared PIN header; internal routes use the
      background secret header.
"""

import hmac

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings

SESSION_ALGORITHM = "HS256"
WAREHOUSE_PIN_HEADER = "x-warehouse-pin"

_security = HTTPBearer()


def verify_jwt(token: str) -> dict:
    if not settings.SESSION_SECRET:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Session verification not configured",
        )
    try:
        decoded = jwt.decode(
            token,
            settings.SESSION_SECRET,
            algorithms=[SESSION_ALGORITHM],
            options={"verify_exp": True, "require": ["exp", "email"]},
        )
    except jwt.PyJWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    email = str(decoded.get("email") or "").strip().lower()
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token: missing email",
            headers={"WWW-Authenticate": "Bearer"},
        )
    decoded["email"] = email
    return decoded


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    token = credentials.credentials
    return verify_jwt(token)


def _matches(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def warehouse_pin_dependency(x_warehouse_pin: str | None = Header(default=None)) -> None:
    if not _matches(x_warehouse_pin, settings.WAREHOUSE_PIN):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid PIN")


def background_secret_dependency(x_background_secret: str | None = Header(default=None)) -> None:
    if not _matches(x_background_secret, settings.background_secret()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
