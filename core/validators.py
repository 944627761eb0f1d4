"""
core/validators.py -- Input validation contracts for login and registration.

All functions here are pure: no I/O, no store access, no logging. They run
before any business logic so a malformed request never reaches the store.

Rule functions (validate_username, validate_password, validate_email) return a
list of messages. The entry points (validate_login_credentials,
validate_registration_data) gather every message from every field and raise a
single GatewayError.validation carrying all of them -- callers see the full
list of violated rules in one response, never just the first.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import re
import string
from dataclasses import dataclass
from typing import Any, Optional

from core.errors import GatewayError

# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
EMAIL_MAX_LENGTH = 255

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# C0 controls plus DEL. NUL is the main offender (truncates strings in C-backed drivers).
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_SYMBOLS = frozenset(string.punctuation)


@dataclass(frozen=True)
class LoginCredentials:
    username: str
    password: str


@dataclass(frozen=True)
class RegistrationData:
    username: str
    password: str
    email: Optional[str] = None


def sanitize_string(value: Any) -> Any:
    """Strip control characters and surrounding whitespace from strings.

    Non-string values pass through untouched so the type checks in the rule
    functions can report them.
    """
    if not isinstance(value, str):
        return value
    return _CONTROL_CHARS_RE.sub("", value).strip()


def validate_username(username: Any) -> list[str]:
    """Return at most one message -- the first rule the username breaks."""
    if username is None or username == "":
        return ["Username is required"]
    if not isinstance(username, str):
        return ["Username must be a string"]
    if len(username) < USERNAME_MIN_LENGTH:
        return [f"Username must be at least {USERNAME_MIN_LENGTH} characters long"]
    if len(username) > USERNAME_MAX_LENGTH:
        return [f"Username must not exceed {USERNAME_MAX_LENGTH} characters"]
    if not _USERNAME_RE.match(username):
        return ["Username can only contain letters, numbers, hyphens, and underscores"]
    return []


def validate_password(password: Any) -> list[str]:
    """Registration-strength password check.

    Length and each of the four character classes are checked independently,
    so a short all-lowercase password gets the length message AND one message
    per missing class.
    """
    if password is None or password == "":
        return ["Password is required"]
    if not isinstance(password, str):
        return ["Password must be a string"]

    errors: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    elif len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"Password must not exceed {PASSWORD_MAX_LENGTH} characters")

    if not any(c.isupper() for c in password):
        errors.append("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        errors.append("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        errors.append("Password must contain at least one number")
    if not any(c in _SYMBOLS for c in password):
        errors.append("Password must contain at least one special character")
    return errors


def validate_email(email: Any) -> list[str]:
    if email is None or email == "":
        return ["Email is required"]
    if not isinstance(email, str):
        return ["Email must be a string"]
    if len(email) > EMAIL_MAX_LENGTH:
        return [f"Email must not exceed {EMAIL_MAX_LENGTH} characters"]
    if not _EMAIL_RE.match(email):
        return ["Invalid email format"]
    return []


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def validate_login_credentials(username: Any, password: Any) -> LoginCredentials:
    """Sanitize and check login input. Raises GatewayError(kind=validation).

    Login deliberately skips the complexity rules: an account created before a
    policy change must still be able to sign in.
    """
    clean_username = sanitize_string(username)
    clean_password = sanitize_string(password)

    errors = validate_username(clean_username)
    if clean_password is None or clean_password == "":
        errors.append("Password is required")
    elif not isinstance(clean_password, str):
        errors.append("Password must be a string")

    if errors:
        raise GatewayError.validation(errors)
    return LoginCredentials(username=clean_username, password=clean_password)


def validate_registration_data(username: Any, password: Any, email: Any = None) -> RegistrationData:
    """Sanitize and check registration input. Raises GatewayError(kind=validation).

    email is optional; an empty or whitespace-only value is treated as absent.
    A present email is lowercased so uniqueness is case-insensitive.
    """
    clean_username = sanitize_string(username)
    clean_password = sanitize_string(password)
    clean_email = sanitize_string(email) if email is not None else None

    errors: list[str] = []
    errors.extend(validate_username(clean_username))
    errors.extend(validate_password(clean_password))
    if clean_email is not None and clean_email != "":
        errors.extend(validate_email(clean_email))

    if errors:
        raise GatewayError.validation(errors)
    return RegistrationData(
        username=clean_username,
        password=clean_password,
        email=clean_email.lower() if clean_email else None,
    )
