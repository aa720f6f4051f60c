"""Tests for state generation, comparison and log scrubbing."""

from __future__ import annotations

import pytest

from kv_oauth.security import (
    MASK,
    constant_time_equals,
    generate_secure_token,
    mask_sensitive_data,
    redact,
)


class TestRedact:
    """Tests for log placeholders."""

    def test_present_value(self) -> None:
        assert redact("client-secret") == MASK

    @pytest.mark.parametrize("value", ["", None])
    def test_absent_value(self, value: str | None) -> None:
        assert redact(value) == "<empty>"


class TestConstantTimeEquals:
    """Tests for state comparison."""

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("state-1", "state-1", True),
            ("state-1", "state-2", False),
            ("state-1", "state-10", False),
            (None, None, True),
            (None, "state-1", False),
            ("state-1", None, False),
        ],
    )
    def test_compare(self, a: str | None, b: str | None, expected: bool) -> None:
        assert constant_time_equals(a, b) is expected


class TestGenerateSecureToken:
    """Tests for state and session id generation."""

    def test_default_is_256_bits(self) -> None:
        """32 random bytes encode to 43 unpadded base64url characters."""
        assert len(generate_secure_token()) == 43

    def test_no_repeats(self) -> None:
        tokens = [generate_secure_token() for _ in range(200)]
        assert len(set(tokens)) == len(tokens)

    def test_cookie_safe_alphabet(self) -> None:
        """Session ids go into cookies and query strings unescaped."""
        token = generate_secure_token(48)
        assert token.replace("-", "").replace("_", "").isalnum()
        assert ":" not in token


class TestMaskSensitiveData:
    """Tests for scrubbing token endpoint responses before logging."""

    def test_token_response(self) -> None:
        body = {
            "access_token": "gho_abc",
            "refresh_token": "ghr_def",
            "token_type": "bearer",
            "expires_in": 28800,
        }

        masked = mask_sensitive_data(body)

        assert masked == {
            "access_token": MASK,
            "refresh_token": MASK,
            "token_type": "bearer",
            "expires_in": 28800,
        }
        assert body["access_token"] == "gho_abc"

    def test_suffix_and_secret_keys(self) -> None:
        """Unknown ``*_token`` and ``*secret*`` keys are masked as well."""
        masked = mask_sensitive_data({"session_token": "s", "ClientSecretValue": "c", "scope": "x"})

        assert masked == {"session_token": MASK, "ClientSecretValue": MASK, "scope": "x"}

    def test_nested_structures(self) -> None:
        masked = mask_sensitive_data(
            {
                "oauth_session": {"state": "st", "code_verifier": "v"},
                "accounts": [{"login": "octocat", "id_token": "jwt"}, "plain"],
            }
        )

        assert masked["oauth_session"] == {"state": "st", "code_verifier": MASK}
        assert masked["accounts"] == [{"login": "octocat", "id_token": MASK}, "plain"]

    def test_custom_field_set(self) -> None:
        masked = mask_sensitive_data({"code": "abc", "otp": "123"}, frozenset({"otp"}))

        assert masked == {"code": "abc", "otp": MASK}
