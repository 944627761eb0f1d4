"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal representation. Route handlers map between the two.

Every response is an envelope:
  success  {"success": true,  "message": ..., "data": {...}}
  failure  {"success": false, "error": {"code": ..., "message": ..., ...}}

Request bodies accept any JSON value per field on purpose: the validation
rules live in core/validators.py so that every violated rule is reported in a
single 400, with the same messages whether the caller went through HTTP or
called AuthService directly.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from auth.models import PublicUser

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: Any = None
    password: Any = None


class RegisterRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: Any = None
    password: Any = None
    email: Any = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public view of an identity. There is no password field to leak."""

    id: str
    username: str
    email: Optional[str] = None
    last_login: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserOut":
        return cls(**user.to_dict())


class AuthData(BaseModel):
    token: str
    user: UserOut


class VerifyData(BaseModel):
    user: UserOut


class AuthEnvelope(BaseModel):
    success: bool = True
    message: str
    data: AuthData


class VerifyEnvelope(BaseModel):
    success: bool = True
    message: str
    data: VerifyData


class MessageEnvelope(BaseModel):
    success: bool = True
    message: str


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[list[str]] = None
    fields: Optional[list[str]] = None
    lock_remaining_minutes: Optional[int] = None
    retry_after: Optional[int] = None


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: ErrorBody


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = {}
    timestamp: str
