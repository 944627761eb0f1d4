"""
api/limiter.py -- FastAPI glue around the in-memory rate limit engine.

The engine itself (core/ratelimit.py) only counts keys. This module decides:
  - which key a request maps to (client_address, auth_key),
  - which policy (window, ceiling) applies -- read from
    app.state.rate_limit_policies, which the lifespan builds from Settings,
  - which headers every limited response carries,
  - and raises GatewayError(kind=rate_limit) when a check fails.

Two dependencies are exported:
  api_rate_limit   -- every route, keyed by client address.
  auth_rate_limit  -- login/register, keyed by "auth:<address>:<username>" so
                      brute-force pressure on one account from one address is
                      isolated from everything else that address does.

Both use the single RateLimiter on app.state. If each route built its own
engine, counters would be split and limits would never trigger.

Key derivation errors are NOT caught here. They propagate to the generic
exception handler (500), so a broken key function neither grants nor denies
requests silently.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Callable, Union

from fastapi import Request, Response

from core import audit
from core.errors import GatewayError
from core.ratelimit import RateLimiter, RateLimitResult
from core.validators import sanitize_string

logger = logging.getLogger("authgate.api.limiter")

KeyFunc = Callable[[Request], Union[str, Awaitable[str]]]

UNKNOWN_USERNAME = "unknown"


@dataclass(frozen=True)
class RateLimitPolicy:
    window_seconds: int
    max_requests: int


# ---------------------------------------------------------------------------
# Key functions
# ---------------------------------------------------------------------------


def client_address(request: Request) -> str:
    """Default key: the caller's network address."""
    return request.client.host if request.client else "unknown"


async def auth_key(request: Request) -> str:
    """Key for authentication endpoints: address + submitted username.

    The body is read through Starlette's cached request.json(), so the route
    still receives it. A body that is not a JSON object, or has no string
    username, maps to the "unknown" placeholder; body validation itself is the
    route's job and is reported after the limit check.

    The username goes through the same sanitize_string() as the login lookup,
    so every spelling that authenticates as one account shares one bucket.
    """
    username = UNKNOWN_USERNAME
    try:
        body = await request.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        submitted = sanitize_string(body.get("username"))
        if isinstance(submitted, str) and submitted:
            username = submitted
    return f"auth:{client_address(request)}:{username}"


# ---------------------------------------------------------------------------
# Headers
# ---------------------------------------------------------------------------


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_epoch_seconds),
    }


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------


class RateLimit:
    """Callable FastAPI dependency enforcing one named policy.

    Usage:
        @router.post("/auth/login", dependencies=[Depends(auth_rate_limit)])
    """

    def __init__(self, policy: str, key_func: KeyFunc = client_address, message: str = "") -> None:
        self.policy = policy
        self.key_func = key_func
        self.message = message or "Too many requests, please try again later"

    async def __call__(self, request: Request, response: Response) -> RateLimitResult:
        limiter: RateLimiter = request.app.state.rate_limiter
        policy: RateLimitPolicy = request.app.state.rate_limit_policies[self.policy]

        key = self.key_func(request)
        if inspect.isawaitable(key):
            key = await key

        result = limiter.check(key, policy.window_seconds, policy.max_requests)
        response.headers.update(rate_limit_headers(result))
        # Error responses are built from scratch by the exception handlers;
        # they read this to carry the same headers.
        request.state.rate_limit = result

        if not result.allowed:
            audit.log_security_event(
                audit.RATE_LIMIT_EXCEEDED,
                key=key,
                path=request.url.path,
                count=result.count,
            )
            raise GatewayError.rate_limit(
                limit=result.limit,
                remaining=result.remaining,
                reset_at=result.reset_at,
                retry_after=result.retry_after(limiter.clock.now()),
                message=self.message,
            )
        return result


api_rate_limit = RateLimit("api")
auth_rate_limit = RateLimit("auth", key_func=auth_key, message="Too many login attempts, please try again later")
