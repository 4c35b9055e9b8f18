"""Tests for API endpoints."""

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from psp_sync.api import app, provide_page_source
from psp_sync.auth import key_fingerprint, limiter, rate_limit_key
from psp_sync.connectors import SimulatorPageSource
from psp_sync.timeline import PageSourceError


@pytest.fixture
def simulator():
    """Simulated upstream with 25 payments."""
    source = SimulatorPageSource()
    source.add_payments(25)
    return source


@pytest.fixture
def client(simulator):
    """Create test client backed by a fresh in-memory database."""
    limiter.reset()
    app.dependency_overrides[provide_page_source] = lambda: simulator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True}


class TestAuthentication:
    """Tests for API key verification."""

    def test_missing_api_key(self, client):
        """Test that requests without a bearer token are rejected."""
        response = client.post("/sync/simulator/run", json={})
        assert response.status_code in (401, 403)

    def test_wrong_api_key(self, client):
        """Test that a wrong API key is rejected."""
        response = client.post(
            "/sync/simulator/run",
            json={},
            headers={"Authorization": "Bearer wrong_key"},
        )
        assert response.status_code == 401

    def test_unconfigured_api_key(self, client, monkeypatch):
        """Test that a server without API_KEY refuses to serve."""
        monkeypatch.delenv("API_KEY", raising=False)
        monkeypatch.delenv("API_KEYS", raising=False)
        response = client.get(
            "/sync/simulator/default",
            headers={"Authorization": "Bearer anything"},
        )
        assert response.status_code == 500


class TestRunSync:
    """Tests for POST /sync/{provider}/run."""

    def test_run_to_completion(self, client, auth_headers):
        """Test a run that reaches the tail."""
        response = client.post(
            "/sync/simulator/run",
            json={"account_id": "acct_1", "page_size": 10},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "simulator"
        assert data["account_id"] == "acct_1"
        assert data["steps"] == 5
        assert data["emitted"] == 25
        assert data["stored"] == 25
        assert data["has_more"] is False
        assert data["phase"] == "tailing"
        assert data["latest_id"] == "sim_25"

    def test_run_with_max_steps(self, client, auth_headers):
        """Test that max_steps pauses a run mid-scan."""
        response = client.post(
            "/sync/simulator/run",
            json={"page_size": 10, "max_steps": 1},
            headers=auth_headers,
        )

        data = response.json()
        assert data["steps"] == 1
        assert data["has_more"] is True
        assert data["phase"] == "scanning"
        assert data["depth"] == 1

    @pytest.mark.parametrize("body", [
        {"page_size": 0},
        {"page_size": 5000},
        {"max_steps": 0},
        {"account_id": ""},
    ])
    def test_invalid_body(self, client, auth_headers, body):
        response = client.post("/sync/simulator/run", json=body, headers=auth_headers)
        assert response.status_code == 422

    def test_source_error_returns_502(self, client, auth_headers, simulator):
        """Test that an upstream failure is reported as a bad gateway."""
        simulator.fail_next()

        response = client.post("/sync/simulator/run", json={}, headers=auth_headers)

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["provider"] == "simulator"
        assert detail["retryable"] is True

    def test_non_retryable_source_error(self, client, auth_headers, simulator):
        simulator.fail_next(PageSourceError("Invalid API key", status_code=401, retryable=False))

        response = client.post("/sync/simulator/run", json={}, headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["detail"]["retryable"] is False

    def test_unknown_provider(self, client, auth_headers):
        """Test that an unsupported provider is a bad request."""
        app.dependency_overrides.pop(provide_page_source)

        response = client.post("/sync/paypal/run", json={}, headers=auth_headers)

        assert response.status_code == 400
        assert "Unsupported PSP provider" in response.json()["detail"]


class TestSyncProgress:
    """Tests for the progress and payments endpoints."""

    def test_progress_not_found(self, client, auth_headers):
        response = client.get("/sync/simulator/acct_1", headers=auth_headers)
        assert response.status_code == 404

    def test_progress_after_run(self, client, auth_headers):
        """Test that progress reflects the stored timeline."""
        client.post(
            "/sync/simulator/run",
            json={"account_id": "acct_1", "page_size": 10, "max_steps": 3},
            headers=auth_headers,
        )

        response = client.get("/sync/simulator/acct_1", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["phase"] == "replaying"
        assert data["depth"] == 1
        assert data["latest_id"] == "sim_5"
        assert data["steps_count"] == 3
        assert data["payments_count"] == 5

    def test_progress_records_last_error(self, client, auth_headers, simulator):
        simulator.fail_next()
        client.post("/sync/simulator/run", json={"account_id": "acct_1"}, headers=auth_headers)

        response = client.get("/sync/simulator/acct_1", headers=auth_headers)

        assert "Simulated transport error" in response.json()["last_error"]

    def test_list_payments(self, client, auth_headers):
        """Test that delivered payments are listed in emission order."""
        client.post(
            "/sync/simulator/run",
            json={"account_id": "acct_1", "page_size": 10},
            headers=auth_headers,
        )

        response = client.get(
            "/sync/simulator/acct_1/payments",
            params={"limit": 5, "offset": 10},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 5
        assert data["offset"] == 10
        assert [p["reference"] for p in data["payments"]] == [f"sim_{i}" for i in range(11, 16)]
        assert data["payments"][0]["asset"] == "USD/2"


class TestApiKeyRotation:
    """Tests for accepting several API keys and per-key rate limits."""

    def test_rotated_key_is_accepted(self, client, monkeypatch):
        """Test that keys listed in API_KEYS are accepted next to API_KEY."""
        monkeypatch.setenv("API_KEYS", "old_key, new_key")

        for key in ("test_api_key_12345", "old_key", "new_key"):
            response = client.get("/sync/simulator/acct_1", headers={"Authorization": f"Bearer {key}"})
            assert response.status_code == 404

        response = client.get("/sync/simulator/acct_1", headers={"Authorization": "Bearer other"})
        assert response.status_code == 401

    def test_rate_limit_key_uses_fingerprint(self):
        """Test that the limiter buckets by key without exposing it."""
        request = Request({
            "type": "http",
            "headers": [(b"authorization", b"Bearer secret_key")],
            "client": ("10.0.0.1", 1234),
        })

        bucket = rate_limit_key(request)

        assert bucket == f"key:{key_fingerprint('secret_key')}"
        assert "secret_key" not in bucket

    def test_rate_limit_key_falls_back_to_address(self):
        request = Request({"type": "http", "headers": [], "client": ("10.0.0.1", 1234)})

        assert rate_limit_key(request) == "10.0.0.1"
