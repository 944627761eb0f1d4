"""
core/errors.py -- The error taxonomy shared by every layer.

Pattern: Tagged variant. There is one exception type, GatewayError, and the
`kind` field says which family a failure belongs to. Each kind carries its own
payload in `detail`. The HTTP layer switches on `kind` to choose a status code
and response shape; nothing downstream relies on subclass checks.

  validation      400  -- caller-supplied data broke one or more rules.
                          detail.errors lists EVERY violated rule, not the first.
  authentication  401  -- identity, credential, lock, or token failure.
                          message is always generic; detail may carry the
                          remaining lock time, which does not reveal whether
                          the password was right.
  rate_limit      429  -- request volume exceeded; detail carries reset info.
  internal        500  -- anything unexpected. Never carries the raw error.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    INTERNAL = "internal"


_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.INTERNAL: 500,
}

_ERROR_CODES: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "validation_error",
    ErrorKind.AUTHENTICATION: "authentication_error",
    ErrorKind.RATE_LIMIT: "rate_limited",
    ErrorKind.INTERNAL: "internal_error",
}


# ---------------------------------------------------------------------------
# Per-kind payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationDetail:
    errors: list[str] = field(default_factory=list)
    # Names of fields that collided with an existing identity (registration).
    fields: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AuthenticationDetail:
    lock_remaining_minutes: Optional[int] = None


@dataclass(frozen=True)
class RateLimitDetail:
    limit: int
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: int  # whole seconds until the window resets


ErrorDetail = Union[ValidationDetail, AuthenticationDetail, RateLimitDetail, None]


# ---------------------------------------------------------------------------
# The error
# ---------------------------------------------------------------------------


class GatewayError(Exception):
    """A failure the gateway is prepared to report to a caller.

    Build instances through the classmethods so kind and payload always agree:
        raise GatewayError.validation(["Username is required"])
        raise GatewayError.authentication("Invalid credentials")
    """

    def __init__(self, kind: ErrorKind, message: str, detail: ErrorDetail = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = detail

    def __repr__(self) -> str:
        return f"GatewayError(kind={self.kind.value!r}, message={self.message!r})"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]

    @property
    def code(self) -> str:
        return _ERROR_CODES[self.kind]

    @property
    def errors(self) -> list[str]:
        """Field-level messages for validation errors; empty for every other kind."""
        if isinstance(self.detail, ValidationDetail):
            return list(self.detail.errors)
        return []

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def validation(
        cls,
        errors: list[str],
        message: str = "Validation failed",
        fields: Optional[list[str]] = None,
    ) -> "GatewayError":
        return cls(ErrorKind.VALIDATION, message, ValidationDetail(list(errors), list(fields or [])))

    @classmethod
    def authentication(
        cls,
        message: str = "Authentication failed",
        lock_remaining_minutes: Optional[int] = None,
    ) -> "GatewayError":
        return cls(ErrorKind.AUTHENTICATION, message, AuthenticationDetail(lock_remaining_minutes))

    @classmethod
    def rate_limit(
        cls,
        limit: int,
        remaining: int,
        reset_at: float,
        retry_after: int,
        message: str = "Too many requests, please try again later",
    ) -> "GatewayError":
        return cls(ErrorKind.RATE_LIMIT, message, RateLimitDetail(limit, remaining, reset_at, retry_after))

    @classmethod
    def internal(cls, message: str = "Internal server error") -> "GatewayError":
        return cls(ErrorKind.INTERNAL, message, None)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_error_body(self) -> dict:
        """Return the `error` member of the failure envelope.

        Field-level details are exposed for validation only. Authentication
        errors never say which factor was wrong.
        """
        body: dict = {"code": self.code, "message": self.message}
        if isinstance(self.detail, ValidationDetail):
            body["details"] = list(self.detail.errors)
            if self.detail.fields:
                body["fields"] = list(self.detail.fields)
        elif isinstance(self.detail, AuthenticationDetail) and self.detail.lock_remaining_minutes is not None:
            body["lock_remaining_minutes"] = self.detail.lock_remaining_minutes
        elif isinstance(self.detail, RateLimitDetail):
            body["retry_after"] = self.detail.retry_after
        return body
