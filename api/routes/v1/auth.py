"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login     -- password login; returns token + public user
  POST /api/v1/auth/register  -- create identity; returns token + public user (201)
  GET  /api/v1/auth/verify    -- resolve bearer token to the current public user
  POST /api/v1/auth/logout    -- informational; never fails, revokes nothing
  GET  /api/v1/auth/health    -- auth service liveness

Request order on limited routes:
  general limit (router) -> auth limit (route) -> body parsing -> input
  validation -> state machine.
A 429 is returned before the body is ever parsed, and an unparseable body
still counts against both limits.

Security:
  [H2] login/register are rate-limited per (address, username) on top of the
       general per-address limit.
  [M5] Cache-Control: no-store on every response that carries a token.
  Wrong username and wrong password produce the same 401 message.

Route handlers are plain `def`: AuthService calls a blocking store and bcrypt,
so FastAPI runs them in its thread pool rather than on the event loop.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from api.limiter import api_rate_limit, auth_rate_limit, client_address
from api.models import (
    AuthData,
    AuthEnvelope,
    LoginRequest,
    MessageEnvelope,
    RegisterRequest,
    UserOut,
    VerifyData,
    VerifyEnvelope,
)
from auth.dependencies import bearer_token, get_auth_service, get_current_user
from auth.models import AuthResult, PublicUser
from auth.service import AuthService
from core.errors import GatewayError

logger = logging.getLogger("authgate.api.auth")

# Auth policy:
# - POST /api/v1/auth/login:     public, auth rate limit
# - POST /api/v1/auth/register:  public, auth rate limit
# - GET  /api/v1/auth/verify:    bearer token required (get_current_user)
# - POST /api/v1/auth/logout:    public; token optional and only logged
# - GET  /api/v1/auth/health:    public
router = APIRouter(dependencies=[Depends(api_rate_limit)])


def _auth_envelope(result: AuthResult, message: str) -> AuthEnvelope:
    return AuthEnvelope(
        message=message,
        data=AuthData(token=result.token, user=UserOut.from_public(result.user)),
    )


async def json_object_body(request: Request) -> dict[str, Any]:
    """Read the request body as a JSON object. An empty body reads as {}.

    This is a parameter dependency, not a declared body model: FastAPI parses
    declared bodies before any dependency runs, which would let an
    unparseable body skip both rate limits. Parameter dependencies resolve
    after the router and route dependencies, so the limits always count first.
    """
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = await request.json()
    except ValueError:
        raise GatewayError.validation(["Request body must be valid JSON"]) from None
    if not isinstance(payload, dict):
        raise GatewayError.validation(["Request body must be a JSON object"])
    return payload


def _body_schema(model: type[BaseModel]) -> dict:
    """openapi_extra documenting a JSON body that is read by json_object_body."""
    return {"requestBody": {"content": {"application/json": {"schema": model.model_json_schema()}}}}


@router.post(
    "/auth/login",
    response_model=AuthEnvelope,
    dependencies=[Depends(auth_rate_limit)],
    openapi_extra=_body_schema(LoginRequest),
)
def login(
    request: Request,
    response: Response,
    payload: dict[str, Any] = Depends(json_object_body),
    service: AuthService = Depends(get_auth_service),
) -> AuthEnvelope:
    """Authenticate with username and password.

    Returns the same generic error for an unknown username and a wrong
    password. A locked account gets a lock-specific message with the minutes
    remaining, even if the password supplied is correct.
    """
    body = LoginRequest.model_validate(payload)
    logger.info("Login attempt: username=%r ip=%s", body.username, client_address(request))
    result = service.login(body.username, body.password)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return _auth_envelope(result, "Login successful")


@router.post(
    "/auth/register",
    response_model=AuthEnvelope,
    status_code=201,
    dependencies=[Depends(auth_rate_limit)],
    openapi_extra=_body_schema(RegisterRequest),
)
def register(
    request: Request,
    response: Response,
    payload: dict[str, Any] = Depends(json_object_body),
    service: AuthService = Depends(get_auth_service),
) -> AuthEnvelope:
    """Create an identity. 400 names each duplicate field (username, email)."""
    body = RegisterRequest.model_validate(payload)
    logger.info("Registration attempt: username=%r ip=%s", body.username, client_address(request))
    result = service.register(body.username, body.password, body.email)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return _auth_envelope(result, "Registration successful")


@router.get("/auth/verify", response_model=VerifyEnvelope)
def verify(current_user: PublicUser = Depends(get_current_user)) -> VerifyEnvelope:
    """Return the current public view of the token's subject.

    Missing, malformed, tampered and expired tokens all yield the same 401.
    """
    return VerifyEnvelope(message="Token is valid", data=VerifyData(user=UserOut.from_public(current_user)))


@router.post("/auth/logout", response_model=MessageEnvelope)
def logout(request: Request, service: AuthService = Depends(get_auth_service)) -> MessageEnvelope:
    """Acknowledge a logout. Tokens are stateless: the client discards its copy."""
    service.logout(bearer_token(request))
    return MessageEnvelope(message="Logout successful")


@router.get("/auth/health")
def auth_health() -> dict:
    return {
        "success": True,
        "message": "Auth service is healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
