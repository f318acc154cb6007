"""Tests for request id resolution and the request-id middleware."""

import uuid

import pytest

from santachat.middleware.request_id import is_valid_request_id, resolve_request_id


class TestResolveRequestId:
    def test_uuid_is_lowercased(self):
        value = str(uuid.uuid4()).upper()
        assert resolve_request_id(value) == value.lower()

    def test_plain_token_is_kept(self):
        assert resolve_request_id("drain.retry-3_x") == "drain.retry-3_x"

    @pytest.mark.parametrize("value", [None, "", "has spaces", "x" * 129, "semi;colon"])
    def test_invalid_values_get_a_fresh_uuid(self, value):
        resolved = resolve_request_id(value)
        assert resolved != value
        assert uuid.UUID(resolved).version == 4

    def test_length_limit(self):
        assert is_valid_request_id("a" * 128)
        assert not is_valid_request_id("a" * 129)


class TestMiddleware:
    def test_echoes_incoming_id(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"

    def test_auth_failures_carry_request_id(self, client):
        response = client.get("/messages", headers={"X-Request-ID": "req-1"})

        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == "req-1"
        assert response.json()["error"]["request_id"] == "req-1"
