"""
Unit tests for data sanitization.
"""

import logging
import re

import pytest

from adaptive_flow.security.sanitizer import (
    DataSanitizer,
    RedactionMethod,
    SensitiveDataPattern,
)


@pytest.fixture
def sanitizer():
    return DataSanitizer()


class TestSensitiveDataPattern:
    """Test sensitive data pattern matching."""

    def test_pattern_matching(self):
        """Test pattern matching functionality."""
        pattern = SensitiveDataPattern(name="ssn", pattern=re.compile(r"\b\d{3}-\d{2}-\d{4}\b"))

        matches = pattern.matches("Mine is 123-45-6789 and theirs is 987-65-4321.")

        assert [m.group() for m in matches] == ["123-45-6789", "987-65-4321"]

    def test_disabled_pattern(self):
        """Test disabled patterns don't match."""
        pattern = SensitiveDataPattern(name="test", pattern=re.compile(r"test"), enabled=False)
        assert pattern.matches("This is a test") == []


class TestSanitizeString:
    """Free-text redaction."""

    def test_default_patterns(self, sanitizer):
        names = {p.name for p in sanitizer.patterns}
        assert {"api_key_prefix", "bearer_token", "jwt_token", "password_field", "email"} <= names

    def test_password_field(self, sanitizer):
        assert sanitizer.sanitize_string("login with password=hunter2 now") == "login with [PASSWORD] now"

    def test_api_key(self, sanitizer):
        assert "abc123" not in sanitizer.sanitize_string("api_key: abc123")

    def test_bearer_token(self, sanitizer):
        result = sanitizer.sanitize_string("Authorization: Bearer abc.def-123")
        assert result == "Authorization: [REDACTED]"

    def test_jwt_is_hashed(self, sanitizer):
        token = "eyJhbGciOi.eyJzdWIiOi.c2lnbmF0dXJl"
        result = sanitizer.sanitize_string(f"token {token}")
        assert token not in result
        assert re.search(r"\[HASH:[0-9a-f]{8}\]", result)

    def test_email_is_partially_kept(self, sanitizer):
        assert sanitizer.sanitize_string("mail alice@example.com") == "mail ali***********com"

    def test_plain_text_is_untouched(self, sanitizer):
        text = 'element "Checkout" is visible'
        assert sanitizer.sanitize_string(text) == text
        assert sanitizer.sanitize_string("") == ""

    @pytest.mark.parametrize(
        "method,expected",
        [
            (RedactionMethod.MASK, "id ******"),
            (RedactionMethod.PLACEHOLDER, "id [ID]"),
            (RedactionMethod.PARTIAL, "id AB**56"),
        ],
    )
    def test_custom_pattern(self, method, expected):
        sanitizer = DataSanitizer(
            patterns=[
                SensitiveDataPattern(
                    name="customer_id",
                    pattern=re.compile(r"AB\d{4}"),
                    redaction_method=method,
                    placeholder="[ID]",
                    partial_chars=2,
                )
            ]
        )
        assert sanitizer.sanitize_string("id AB3456") == expected


class TestSanitizeVariables:
    """Variable maps are redacted by key and by content."""

    def test_sensitive_keys_are_hidden(self, sanitizer):
        variables = {
            "user": "bob",
            "password": "hunter2",
            "profile": {"email": "alice@example.com", "session_token": "t-1"},
            "cards": ["4111 1111 1111 1111"],
            "attempts": 3,
        }

        result = sanitizer.sanitize_variables(variables)

        assert result == {
            "user": "bob",
            "password": "[REDACTED]",
            "profile": {"email": "ali***********com", "session_token": "[REDACTED]"},
            "cards": ["4111***********1111"],
            "attempts": 3,
        }
        assert variables["password"] == "hunter2"

    def test_none_under_sensitive_key_is_kept(self, sanitizer):
        assert sanitizer.sanitize_variables({"api_key": None}) == {"api_key": None}

    def test_is_sensitive_key(self, sanitizer):
        assert sanitizer.is_sensitive_key("DB_PASSWORD")
        assert sanitizer.is_sensitive_key("refreshToken")
        assert not sanitizer.is_sensitive_key("username")


class TestSanitizeLogRecord:
    def test_message_args_and_extras(self, sanitizer):
        record = logging.LogRecord(
            name="adaptive_flow.engine",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Logging in as %s with password=hunter2",
            args=("alice@example.com",),
            exc_info=None,
        )
        record.variables = {"password": "hunter2", "user": "bob"}

        sanitized = sanitizer.sanitize_log_record(record)

        assert sanitized is record
        assert sanitized.getMessage() == "Logging in as ali***********com with [PASSWORD]"
        assert sanitized.variables == {"password": "[REDACTED]", "user": "bob"}
