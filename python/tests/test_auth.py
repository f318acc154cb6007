"""Tests for the auth middleware."""

from fastapi.testclient import TestClient

from santachat.app import create_app
from tests.helpers import auth_headers, mint_expired_token, mint_test_token


class TestAuthMiddleware:
    def test_valid_token(self, client, santa_pair):
        alice, _ = santa_pair
        assert client.get("/messages", headers=auth_headers(alice)).status_code == 200

    def test_expired_token(self, client, santa_pair):
        alice, _ = santa_pair
        token = mint_expired_token(alice)
        response = client.get("/messages", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Token expired"

    def test_wrong_audience(self, client, santa_pair):
        alice, _ = santa_pair
        token = mint_test_token(alice, audience="someone-else")
        response = client.get("/messages", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_malformed_header(self, client):
        response = client.get("/messages", headers={"Authorization": "Token abc"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_garbage_token(self, client):
        response = client.get("/messages", headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 401

    def test_sub_need_not_be_a_uuid(self, client, santa_pair):
        alice, _ = santa_pair
        assert alice == "alice"
        assert client.get("/messages", headers=auth_headers(alice)).status_code == 200


class TestUnconfiguredAuth:
    def test_protected_paths_answer_503(self, monkeypatch):
        for name in ("AUTH_JWKS_URL", "AUTH_ISSUER", "AUTH_AUDIENCES"):
            monkeypatch.delenv(name, raising=False)
        app = create_app()

        with TestClient(app) as client:
            response = client.get("/messages", headers=auth_headers("alice"))
            assert response.status_code == 503
            assert response.json()["error"]["code"] == "E_AUTH_UNAVAILABLE"

            assert client.get("/health").status_code == 200
