"""Tests for JWT helpers and the automation secret."""

from __future__ import annotations

from datetime import timedelta

import jwt
import pytest

from deepdive.core.config import settings
from deepdive.core.encryption import decrypt_api_key, encrypt_api_key, get_key_hint
from deepdive.core.exceptions import AuthenticationError
from deepdive.core.security import (
    JWT_ALGORITHM,
    collect_roles,
    create_access_token,
    decode_access_token,
    is_admin_token,
    verify_service_secret,
)


class TestAccessTokens:
    """Tests for token creation and decoding."""

    def test_round_trip_claims(self):
        token = create_access_token("ops", is_admin=True, email="ops@example.com")

        data = decode_access_token(token)

        assert data.sub == "ops"
        assert data.is_admin is True
        assert data.email == "ops@example.com"

    def test_expired_token(self):
        token = create_access_token("ops", expires_delta=timedelta(seconds=-10))

        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token(token)
        assert exc_info.value.error_code == "TOKEN_EXPIRED"

    def test_wrong_signature(self):
        token = create_access_token("ops")
        tampered = token[:-2] + ("AA" if not token.endswith("AA") else "BB")

        with pytest.raises(AuthenticationError):
            decode_access_token(tampered)

    def test_missing_required_claim(self):
        token = jwt.encode({"sub": "ops"}, settings.auth_secret, algorithm=JWT_ALGORITHM)

        with pytest.raises(AuthenticationError):
            decode_access_token(token)


class TestAdminDetection:
    """Tests for role flattening and admin detection."""

    def test_collect_roles(self):
        assert collect_roles(["Admin", {"app": "viewer, Editor"}]) == {"admin", "viewer", "editor"}
        assert collect_roles(None) == set()

    @pytest.mark.parametrize(
        ("roles", "expected"),
        [(["editor"], True), (["owner"], True), (["viewer"], False), ([], False)],
    )
    def test_privileged_roles(self, roles, expected):
        data = decode_access_token(create_access_token("u", roles=roles))
        assert is_admin_token(data) is expected


class TestServiceSecret:
    """Tests for verify_service_secret."""

    def test_matches(self):
        assert verify_service_secret("test-automation-secret")

    @pytest.mark.parametrize("provided", ["", None, "wrong"])
    def test_rejects(self, provided):
        assert not verify_service_secret(provided)

    def test_unconfigured_secret_rejects_everything(self, test_settings, monkeypatch):
        monkeypatch.setattr(test_settings, "automation_service_secret", "")
        assert not verify_service_secret("anything")


class TestCredentialEncryption:
    """Tests for stored credential encryption."""

    def test_decrypts_stored_key(self):
        stored = encrypt_api_key("sk-live-1234567890")

        assert stored != "sk-live-1234567890"
        assert decrypt_api_key(stored) == "sk-live-1234567890"

    def test_invalid_ciphertext(self):
        assert decrypt_api_key("not-a-fernet-token") is None

    def test_key_hint(self):
        assert get_key_hint("sk-live-1234567890") == "sk-l...7890"
        assert get_key_hint("short") == "*****"
