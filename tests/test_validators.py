"""Unit tests for core/validators.py -- login and registration input rules.

Covers:
- Username length/format rules (first failure only)
- Registration password: length and each character class checked independently
- Email shape and lowercasing
- Sanitization (trim, control characters)
- Entry points report every violated rule across all fields in one error
"""

import pytest

from core.errors import ErrorKind, GatewayError
from core.validators import (
    sanitize_string,
    validate_email,
    validate_login_credentials,
    validate_password,
    validate_registration_data,
    validate_username,
)

# ---------------------------------------------------------------------------
# TestUsername
# ---------------------------------------------------------------------------


class TestUsername:
    @pytest.mark.parametrize("username", ["ab", "a", "x" * 51, "y" * 200])
    def test_length_out_of_range(self, username: str) -> None:
        errors = validate_username(username)
        assert len(errors) == 1
        assert "characters" in errors[0]

    @pytest.mark.parametrize("username", ["abc", "x" * 50, "alice01", "under_score", "hy-phen"])
    def test_valid(self, username: str) -> None:
        assert validate_username(username) == []

    def test_rejects_other_characters(self) -> None:
        assert validate_username("bad name!") == [
            "Username can only contain letters, numbers, hyphens, and underscores"
        ]

    def test_required(self) -> None:
        assert validate_username(None) == ["Username is required"]
        assert validate_username("") == ["Username is required"]

    def test_non_string(self) -> None:
        assert validate_username(12345) == ["Username must be a string"]


# ---------------------------------------------------------------------------
# TestPassword
# ---------------------------------------------------------------------------


class TestPassword:
    def test_strong_password_passes(self) -> None:
        assert validate_password("Str0ng!Pass") == []

    def test_lowercase_only_reports_three_missing_classes(self) -> None:
        errors = validate_password("abcdefghij")
        assert errors == [
            "Password must contain at least one uppercase letter",
            "Password must contain at least one number",
            "Password must contain at least one special character",
        ]

    def test_short_password_reports_length_and_classes(self) -> None:
        errors = validate_password("abc")
        assert "Password must be at least 8 characters long" in errors
        assert len(errors) == 4

    def test_each_class_checked_independently(self) -> None:
        assert validate_password("ABCDEFG1!") == ["Password must contain at least one lowercase letter"]
        assert validate_password("abcdefG1x") == ["Password must contain at least one special character"]
        assert validate_password("abcdefG!x") == ["Password must contain at least one number"]

    def test_too_long(self) -> None:
        errors = validate_password("Aa1!" * 40)
        assert errors == ["Password must not exceed 128 characters"]

    def test_non_string(self) -> None:
        assert validate_password(12345678) == ["Password must be a string"]


# ---------------------------------------------------------------------------
# TestEmail
# ---------------------------------------------------------------------------


class TestEmail:
    @pytest.mark.parametrize("email", ["a@x.com", "first.last@sub.example.org"])
    def test_valid(self, email: str) -> None:
        assert validate_email(email) == []

    @pytest.mark.parametrize("email", ["not-an-email", "a@b", "a b@x.com", "@x.com"])
    def test_invalid_format(self, email: str) -> None:
        assert validate_email(email) == ["Invalid email format"]

    def test_too_long(self) -> None:
        assert validate_email("a" * 250 + "@x.com") == ["Email must not exceed 255 characters"]


# ---------------------------------------------------------------------------
# TestSanitize
# ---------------------------------------------------------------------------


class TestSanitize:
    def test_trims_and_strips_control_characters(self) -> None:
        assert sanitize_string("  ali\x00ce\x07 \n") == "alice"

    def test_non_string_passthrough(self) -> None:
        assert sanitize_string(42) == 42
        assert sanitize_string(None) is None


# ---------------------------------------------------------------------------
# TestEntryPoints
# ---------------------------------------------------------------------------


class TestLoginCredentials:
    def test_returns_sanitized_values(self) -> None:
        creds = validate_login_credentials("  alice01 ", "anything")
        assert creds.username == "alice01"
        assert creds.password == "anything"

    def test_login_does_not_apply_complexity_rules(self) -> None:
        creds = validate_login_credentials("alice01", "weak")
        assert creds.password == "weak"

    def test_reports_all_fields(self) -> None:
        with pytest.raises(GatewayError) as excinfo:
            validate_login_credentials("", "")
        assert excinfo.value.kind is ErrorKind.VALIDATION
        assert excinfo.value.errors == ["Username is required", "Password is required"]

    def test_non_string_password(self) -> None:
        with pytest.raises(GatewayError) as excinfo:
            validate_login_credentials("alice01", ["list"])
        assert excinfo.value.errors == ["Password must be a string"]


class TestRegistrationData:
    def test_lowercases_email(self) -> None:
        data = validate_registration_data("alice01", "Str0ng!Pass", "  Alice@X.COM ")
        assert data.email == "alice@x.com"

    def test_blank_email_treated_as_absent(self) -> None:
        data = validate_registration_data("alice01", "Str0ng!Pass", "   ")
        assert data.email is None

    def test_collects_errors_from_every_field(self) -> None:
        with pytest.raises(GatewayError) as excinfo:
            validate_registration_data("ab", "password", "nope")
        errors = excinfo.value.errors
        assert "Username must be at least 3 characters long" in errors
        assert "Password must contain at least one uppercase letter" in errors
        assert "Password must contain at least one number" in errors
        assert "Password must contain at least one special character" in errors
        assert "Invalid email format" in errors
        assert len(errors) == 5
