"""
auth/service.py -- Authentication state machine: login, register, verify.

AuthService is the single orchestration point for credential checks and owns
the account-lockout policy. It is constructed once at process start (see the
lifespan in api/main.py) and injected into routes via app.state -- there is no
module-level instance.

Login pipeline (each step runs to completion before the next starts):

    Validating -> CheckingLock -> CheckingActive -> VerifyingPassword -> Success | Failure

  1. Validating        pure input checks; a failure here touches nothing.
  2. lookup            unknown username -> generic "Invalid credentials".
                       bcrypt still runs against a dummy hash [C1].
  3. CheckingLock      locked -> "Account is locked..." with minutes remaining.
                       The counter is NOT incremented, so repeated attempts
                       during the lock window never extend it.
  4. CheckingActive    inactive -> "Account is inactive".
  5. VerifyingPassword mismatch -> store increments the counter (and may set
                       the lock) and the caller gets "Invalid credentials".
                       That increment is the only side effect that ever
                       accompanies a failure response.
  6. Success           counter reset, last_login stamped, token issued.

Failure surface: every error leaving this module is a GatewayError of kind
validation or authentication (or internal for an unexpected registration
fault). Lower-level exceptions -- database errors, signing errors -- are
logged with full traceback here and replaced with a generic message.

Audit: unknown user, locked, inactive and bad-password outcomes are recorded
through core.audit with enough context for review. Only the audit log can
tell "unknown user" apart from "wrong password"; responses never can.
"""

from __future__ import annotations

import logging
from typing import Optional

from auth.models import AuthResult, PublicUser, User, is_locked, lock_remaining_minutes, public_view
from auth.store import CredentialStore, DuplicateIdentityError
from auth.tokens import InvalidTokenError, TokenEngine
from core import audit
from core.clock import Clock, SystemClock
from core.errors import GatewayError
from core.validators import validate_login_credentials, validate_registration_data

logger = logging.getLogger("authgate.auth")

INVALID_CREDENTIALS = "Invalid credentials"
ACCOUNT_INACTIVE = "Account is inactive"
AUTHENTICATION_FAILED = "Authentication failed"
INVALID_TOKEN = "Invalid or expired token"

_DUPLICATE_MESSAGES = {
    "username": "Username already exists",
    "email": "Email already exists",
}


class AuthService:
    """Login, registration and token-based identity verification.

    Usage:
        service = AuthService(store, token_engine)
        result = service.login("alice01", "Str0ng!Pass")
        user = service.verify_identity(result.token)
    """

    def __init__(self, store: CredentialStore, tokens: TokenEngine, clock: Optional[Clock] = None) -> None:
        self.store = store
        self.tokens = tokens
        self.clock: Clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, username, password) -> AuthResult:
        """Authenticate with username and password and issue a token.

        Raises GatewayError (validation or authentication).
        """
        credentials = validate_login_credentials(username, password)
        try:
            return self._login(credentials.username, credentials.password)
        except GatewayError:
            raise
        except Exception:
            logger.exception("Login error for %s", credentials.username)
            raise GatewayError.authentication(AUTHENTICATION_FAILED) from None

    def _login(self, username: str, password: str) -> AuthResult:
        user = self.store.find_by_username(username)
        if user is None:
            self.store.verify_password(None, password)
            audit.log_security_event(audit.UNKNOWN_USER, username=username)
            raise GatewayError.authentication(INVALID_CREDENTIALS)

        now = self.clock.now()
        if is_locked(user, now):
            minutes = lock_remaining_minutes(user, now)
            audit.log_security_event(audit.ACCOUNT_LOCKED, username=username, lock_remaining_minutes=minutes)
            raise GatewayError.authentication(
                f"Account is locked. Please try again in {minutes} minutes",
                lock_remaining_minutes=minutes,
            )

        if not user.is_active:
            audit.log_security_event(audit.ACCOUNT_INACTIVE, username=username)
            raise GatewayError.authentication(ACCOUNT_INACTIVE)

        if not self.store.verify_password(user, password):
            updated = self.store.increment_failed_attempts(user.id)
            attempts = updated.failed_login_attempts if updated is not None else user.failed_login_attempts + 1
            audit.log_security_event(
                audit.BAD_PASSWORD,
                username=username,
                attempts=attempts,
                locked=bool(updated is not None and is_locked(updated, self.clock.now())),
            )
            raise GatewayError.authentication(INVALID_CREDENTIALS)

        refreshed = self.store.reset_failed_attempts(user.id) or user
        token = self.tokens.issue(refreshed.id, refreshed.username)
        logger.info("User logged in successfully: id=%s username=%s", refreshed.id, refreshed.username)
        return AuthResult(token=token, user=public_view(refreshed))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, username, password, email=None) -> AuthResult:
        """Create an identity and issue a token for it.

        Uniqueness failures name every collided field ("username", "email"),
        whether caught by the pre-check or by the store's UNIQUE constraints
        during a concurrent insert.
        """
        data = validate_registration_data(username, password, email)
        try:
            existing = self.store.find_by_username_or_email(data.username, data.email)
            collided = _collided_fields(existing, data.username, data.email)
            if collided:
                raise _duplicate_error(collided)

            try:
                user = self.store.create(data.username, data.password, data.email)
            except DuplicateIdentityError as exc:
                logger.info("Registration race on %s for %s", ",".join(exc.fields), data.username)
                raise _duplicate_error(exc.fields) from None

            token = self.tokens.issue(user.id, user.username)
        except GatewayError:
            raise
        except Exception:
            logger.exception("Registration error for %s", data.username)
            raise GatewayError.internal("Registration failed") from None

        logger.info("User registered successfully: id=%s username=%s", user.id, user.username)
        return AuthResult(token=token, user=public_view(user))

    # ------------------------------------------------------------------
    # Token verification
    # ------------------------------------------------------------------

    def verify_identity(self, token: str) -> PublicUser:
        """Resolve a bearer token to the current public view of its subject.

        The subject is re-read from the store on every call: a deleted or
        deactivated identity stops verifying immediately, whatever the token
        says. Does not mutate any state.
        """
        try:
            claims = self.tokens.verify(token)
        except InvalidTokenError:
            raise GatewayError.authentication(INVALID_TOKEN) from None

        try:
            user = self.store.find_by_id(claims.subject_id)
        except Exception:
            logger.exception("Token verification error for subject %s", claims.subject_id)
            raise GatewayError.authentication(INVALID_TOKEN) from None

        if user is None or not user.is_active:
            logger.warning("Token subject %s not found or inactive", claims.subject_id)
            raise GatewayError.authentication("User not found or inactive")
        return public_view(user)

    def logout(self, token: Optional[str]) -> None:
        """Informational only: tokens are stateless and stay valid until exp.

        Never raises. An invalid or missing token is simply not logged as a
        named logout.
        """
        if not token:
            logger.info("Logout without token")
            return
        try:
            claims = self.tokens.verify(token)
        except InvalidTokenError as exc:
            logger.debug("Logout with unusable token: %s", exc.reason)
            return
        logger.info("User logged out: username=%s", claims.username)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _collided_fields(existing: list[User], username: str, email: Optional[str]) -> list[str]:
    fields: list[str] = []
    if any(u.username == username for u in existing):
        fields.append("username")
    if email and any(u.email == email for u in existing):
        fields.append("email")
    return fields


def _duplicate_error(fields: list[str]) -> GatewayError:
    return GatewayError.validation(
        [_DUPLICATE_MESSAGES.get(f, f"{f} already exists") for f in fields],
        message="Validation failed",
        fields=fields,
    )
