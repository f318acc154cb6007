"""Tests for the health endpoint."""


def test_health_needs_no_auth(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"data": {"status": "ok"}}


def test_health_carries_request_id(client):
    response = client.get("/health")
    assert response.headers["X-Request-ID"]
