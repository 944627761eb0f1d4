"""
auth/tokens.py -- Token engine: issue and verify signed, expiring JWTs.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (opaque user id), username,
       iat, exp and iss. Every verify() checks the signature, the issuer, the
       expiry and the presence/shape of the identity claims.

  Expiry is checked against the injected Clock rather than jose's own
       wall-clock check, so the same rule applies in production and in tests
       that move a ManualClock past the expiry instant.

  One failure kind: verify() raises InvalidTokenError for every failure. The
       `reason` attribute (bad_signature, expired, issuer_mismatch, malformed)
       exists for logs only -- callers map every InvalidTokenError to the same
       generic 401 so error messages reveal nothing about token structure.

  Stateless: nothing is stored server-side. There is no revoke path; a token
       is valid until exp.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from core.clock import Clock, SystemClock

logger = logging.getLogger("authgate.tokens")

_ALGORITHM = "HS256"


class InvalidTokenError(Exception):
    """The token cannot be trusted. reason is for logging, never for responses."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid token ({reason})")
        self.reason = reason


@dataclass(frozen=True)
class TokenClaims:
    subject_id: str
    username: str
    issued_at: int  # epoch seconds
    expires_at: int  # epoch seconds


class TokenEngine:
    """Issues and verifies access tokens.

    Usage:
        engine = TokenEngine(secret_key, issuer="authgate", expire_seconds=86400)
        token = engine.issue(user.id, user.username)
        claims = engine.verify(token)
    """

    def __init__(
        self,
        secret_key: str,
        *,
        issuer: str,
        expire_seconds: int,
        clock: Optional[Clock] = None,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = secret_key
        self.issuer = issuer
        self.expire_seconds = expire_seconds
        self.clock: Clock = clock or SystemClock()

    def issue(self, subject_id: str, username: str) -> str:
        """Encode a signed JWT for the given identity."""
        issued_at = int(self.clock.now())
        payload = {
            "sub": str(subject_id),
            "username": username,
            "iat": issued_at,
            "exp": issued_at + self.expire_seconds,
            "iss": self.issuer,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Decode and validate a JWT. Pure: repeated calls return identical claims.

        Raises InvalidTokenError on any failure.
        """
        if not token or not isinstance(token, str):
            raise self._reject("malformed")
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                issuer=self.issuer,
                options={"verify_exp": False, "require_iss": True},
            )
        except JWTClaimsError as exc:
            raise self._reject("issuer_mismatch" if "issuer" in str(exc).lower() else "malformed") from exc
        except JWTError as exc:
            reason = "bad_signature" if "signature" in str(exc).lower() else "malformed"
            raise self._reject(reason) from exc

        subject_id = payload.get("sub")
        username = payload.get("username")
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        if not isinstance(subject_id, str) or not subject_id:
            raise self._reject("malformed")
        if not isinstance(username, str) or not username:
            raise self._reject("malformed")
        if not isinstance(issued_at, int) or not isinstance(expires_at, int):
            raise self._reject("malformed")
        if self.clock.now() >= expires_at:
            raise self._reject("expired")

        return TokenClaims(subject_id=subject_id, username=username, issued_at=issued_at, expires_at=expires_at)

    @staticmethod
    def _reject(reason: str) -> InvalidTokenError:
        logger.warning("Token verification failed: %s", reason)
        return InvalidTokenError(reason)
