"""Tests for bearer token verification and the auth middleware."""

import time
from uuid import uuid4

import jwt
import pytest

from polychat.auth.verifier import Hs256TokenVerifier, mint_access_token
from polychat.config import clear_settings_cache
from polychat.db.models import User
from polychat.errors import UnauthorizedError
from tests.helpers import (
    auth_headers,
    create_test_user_id,
    mint_expired_token,
    mint_token_with_bad_signature,
)

SECRET = "unit-test-secret"


class TestHs256TokenVerifier:
    def test_valid_token(self):
        user_id = uuid4()
        claims = Hs256TokenVerifier(SECRET).verify(mint_access_token(user_id, SECRET))
        assert claims["sub"] == str(user_id)

    def test_default_lifetime_comes_from_settings(self, monkeypatch):
        monkeypatch.setenv("JWT_TTL_SECONDS", "900")
        clear_settings_cache()

        claims = Hs256TokenVerifier(SECRET).verify(mint_access_token(uuid4(), SECRET))

        assert claims["exp"] - claims["iat"] == 900

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            Hs256TokenVerifier("")

    def test_expired_token(self):
        now = int(time.time())
        token = jwt.encode({"sub": str(uuid4()), "exp": now - 3600}, SECRET, algorithm="HS256")
        with pytest.raises(UnauthorizedError, match="Token expired"):
            Hs256TokenVerifier(SECRET).verify(token)

    def test_expiry_within_clock_skew_accepted(self):
        now = int(time.time())
        token = jwt.encode({"sub": str(uuid4()), "exp": now - 30}, SECRET, algorithm="HS256")
        Hs256TokenVerifier(SECRET).verify(token)

    def test_wrong_secret(self):
        token = mint_access_token(uuid4(), "another-secret")
        with pytest.raises(UnauthorizedError, match="signature"):
            Hs256TokenVerifier(SECRET).verify(token)

    def test_garbage_token(self):
        with pytest.raises(UnauthorizedError, match="format"):
            Hs256TokenVerifier(SECRET).verify("not.a.jwt")

    def test_missing_exp(self):
        token = jwt.encode({"sub": str(uuid4())}, SECRET, algorithm="HS256")
        with pytest.raises(UnauthorizedError):
            Hs256TokenVerifier(SECRET).verify(token)

    def test_non_uuid_sub(self):
        token = jwt.encode(
            {"sub": "alice", "exp": int(time.time()) + 60}, SECRET, algorithm="HS256"
        )
        with pytest.raises(UnauthorizedError, match="UUID"):
            Hs256TokenVerifier(SECRET).verify(token)


class TestAuthMiddleware:
    def test_health_is_public(self, authenticated_client):
        response = authenticated_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_header(self, authenticated_client):
        response = authenticated_client.get("/chats")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_non_bearer_header(self, authenticated_client):
        response = authenticated_client.get("/chats", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid authorization header format"}

    def test_expired_token(self, authenticated_client):
        headers = {"Authorization": f"Bearer {mint_expired_token(uuid4())}"}
        response = authenticated_client.get("/chats", headers=headers)
        assert response.status_code == 401
        assert response.json() == {"error": "Token expired"}

    def test_bad_signature(self, authenticated_client):
        headers = {"Authorization": f"Bearer {mint_token_with_bad_signature(uuid4())}"}
        response = authenticated_client.get("/chats", headers=headers)
        assert response.status_code == 401

    def test_first_request_creates_user(self, authenticated_client, db_session):
        user_id = create_test_user_id()
        response = authenticated_client.get("/chats", headers=auth_headers(user_id))

        assert response.status_code == 200
        assert db_session.get(User, user_id) is not None

    def test_bootstrap_is_idempotent(self, authenticated_client):
        user_id = create_test_user_id()
        for _ in range(2):
            response = authenticated_client.get("/chats", headers=auth_headers(user_id))
            assert response.status_code == 200
