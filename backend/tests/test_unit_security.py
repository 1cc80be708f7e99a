"""Unit tests for core/security.py, no database required."""

import os
from datetime import timedelta

import pytest

# Ensure settings can be loaded without .env
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-unit-tests")

from jose import JWTError  # noqa: E402

from app.core.security import (  # noqa: E402
    create_access_token,
    create_refresh_token,
    decode_token,
    get_password_hash,
    verify_password,
)


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = get_password_hash("pickup-at-three")
        assert hashed != "pickup-at-three"
        assert verify_password("pickup-at-three", hashed)

    def test_wrong_password_rejected(self):
        hashed = get_password_hash("correct-password")
        assert not verify_password("wrong-password", hashed)

    def test_salted(self):
        assert get_password_hash("same") != get_password_hash("same")

    def test_garbage_hash_is_rejected_not_raised(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")


class TestJWT:
    def test_access_token_claims(self):
        payload = decode_token(create_access_token({"sub": "user-123"}))
        assert payload["sub"] == "user-123"
        assert payload["type"] == "access"
        assert "exp" in payload

    def test_refresh_token_type(self):
        payload = decode_token(create_refresh_token({"sub": "user-456"}))
        assert payload["type"] == "refresh"

    def test_expired_token_raises(self):
        token = create_access_token({"sub": "x"}, expires_delta=timedelta(seconds=-10))
        with pytest.raises(JWTError):
            decode_token(token)

    def test_tampered_token_raises(self):
        header, body, signature = create_access_token({"sub": "x"}).split(".")
        with pytest.raises(JWTError):
            decode_token(".".join([header, body + "x", signature]))

    def test_input_claims_not_mutated(self):
        data = {"sub": "user-789"}
        create_access_token(data)
        assert data == {"sub": "user-789"}
