"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Tokens arrive as `Authorization: Bearer <token>`. There is no cookie or
API-key path: the gateway only deals in stateless bearer tokens.

bearer_token() is the soft variant (returns None when the header is absent or
not a Bearer credential). get_current_user() resolves the token through
AuthService.verify_identity() and raises GatewayError(kind=authentication)
on any failure; the exception handler in api/main.py renders it as 401.

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from auth.models import PublicUser
from auth.service import AuthService
from core.errors import GatewayError

_BEARER_PREFIX = "bearer "


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService built by the lifespan."""
    return request.app.state.auth_service


def bearer_token(request: Request) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer ...` header, if any."""
    header = request.headers.get("Authorization", "")
    if header[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
        return None
    token = header[len(_BEARER_PREFIX) :].strip()
    return token or None


def get_current_user(request: Request) -> PublicUser:
    """Require a valid bearer token. Raises GatewayError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: PublicUser = Depends(get_current_user)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise GatewayError.authentication("No token provided")
    return get_auth_service(request).verify_identity(token)
