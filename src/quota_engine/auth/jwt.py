"""Bearer token authentication: every request acts on the tenant in its token."""
from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

import jwt
from fastapi import Header, HTTPException, status

from quota_engine.core.config import settings


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=message)


def _bearer_token(authorization: str) -> str:
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Missing bearer token")
    return token


def decode_tenant_token(token: str) -> Dict[str, Any]:
    """Decode a token and return its claims with ``tenant_id`` as a UUID.

    Raises a 401 ``HTTPException`` when the token is invalid or names no tenant.
    """

    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("Invalid token") from exc

    raw_tenant = claims.get("tenant_id")
    if raw_tenant is None:
        raise _unauthorized("Tenant missing in token")
    try:
        claims["tenant_id"] = UUID(str(raw_tenant))
    except ValueError as exc:
        raise _unauthorized("Invalid tenant identifier") from exc
    return claims


def require_auth(authorization: str = Header(...)) -> Dict[str, Any]:
    claims = decode_tenant_token(_bearer_token(authorization))
    return {"tenant_id": claims["tenant_id"], "claims": claims}
