"""
Unit tests for authentication service.
Tests JWT token creation and verification.
"""
from datetime import timedelta

import jwt

from tablematch.services import auth_service


class TestJWTTokens:
    """Tests for JWT token creation and verification."""

    def test_create_and_verify_token(self):
        """Test a fresh token round-trips its claims."""
        token = auth_service.create_access_token({"user_id": 7})
        payload = auth_service.verify_token(token)

        assert payload["user_id"] == 7
        assert payload["exp"] > payload["iat"]

    def test_expired_token(self):
        """Test expired tokens are rejected."""
        token = auth_service.create_access_token({"user_id": 7}, expires_delta=timedelta(minutes=-1))
        assert auth_service.verify_token(token) is None

    def test_tampered_token(self):
        """Test tokens signed with another key are rejected."""
        forged = jwt.encode({"user_id": 1}, "some-other-secret", algorithm="HS256")
        assert auth_service.verify_token(forged) is None

    def test_garbage_token(self):
        """Test non-JWT strings are rejected."""
        assert auth_service.verify_token("not-a-token") is None
