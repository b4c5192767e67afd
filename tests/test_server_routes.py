"""Tests for the signature server routes."""

import asyncio
import base64
import threading
import time

import pytest
from starlette.testclient import TestClient

import naversign.server.main as server_main
from naversign.server.main import SignatureServer, create_app

EXAMPLE_SECRET = "$2b$10$abcdefghijklmnopqrstuv"


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


class TestInfoRoutes:
    """Liveness, timestamp and debug routes."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        payload = response.json()
        assert payload["status"] == "OK"
        assert payload["signature_mode"] == "direct_salt"
        assert isinstance(payload["current_timestamp_ms"], int)
        assert payload["timestamp"].endswith("Z")

    def test_timestamp(self, client):
        before = int(time.time() * 1000)
        payload = client.get("/timestamp").json()
        after = int(time.time() * 1000)

        assert before - 1 <= payload["timestamp_ms"] <= after + 1
        assert payload["timestamp_readable"].endswith("Z")

    def test_debug_echoes_body_and_masks_secret(self, client):
        response = client.post(
            "/debug",
            json={"client_id": "abc123", "client_secret": "top-secret"},
            headers={"X-Custom": "yes"},
        )
        assert response.status_code == 200
        payload = response.json()
        assert payload["received_body"]["client_id"] == "abc123"
        assert payload["received_body"]["client_secret"] == "***"
        assert payload["received_headers"]["x-custom"] == "yes"
        assert payload["keys_received"] == ["client_id", "client_secret"]
        assert payload["body_type"] == "dict"

    def test_debug_accepts_non_json(self, client):
        response = client.post("/debug", content=b"plain text")
        assert response.status_code == 200
        assert response.json()["received_body"] == "plain text"

    def test_debug_can_be_disabled(self, settings):
        settings.debug_endpoint_enabled = False
        with TestClient(create_app(settings)) as test_client:
            response = test_client.post("/debug", json={})
        assert response.status_code == 404
        assert "POST /debug" not in response.json()["available_endpoints"]

    def test_unknown_route_lists_endpoints(self, client):
        response = client.get("/does-not-exist")
        assert response.status_code == 404
        payload = response.json()
        assert payload["error"] == "Endpoint not found"
        assert "POST /naver-signature" in payload["available_endpoints"]
        assert "GET /timestamp" in payload["available_endpoints"]

    def test_wrong_method_lists_endpoints(self, client):
        response = client.get("/naver-signature")
        assert response.status_code == 404
        assert response.headers["content-type"].startswith("application/json")
        payload = response.json()
        assert payload["error"] == "Endpoint not found"
        assert "POST /naver-signature" in payload["available_endpoints"]

    def test_request_id_header(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_cors_headers(self, client):
        response = client.get("/", headers={"Origin": "https://example.com"})
        assert response.headers["access-control-allow-origin"] == "*"


class TestSignatureRoutes:
    """Signature generation and verification over HTTP."""

    def test_generate_and_verify_example(self, client):
        body = {
            "client_id": "abc123",
            "timestamp": "1700000000000",
            "client_secret": EXAMPLE_SECRET,
        }
        response = client.post("/naver-signature", json=body)
        assert response.status_code == 200
        payload = response.json()
        assert payload["signature"].startswith("$2b$10$")
        assert payload["password_used"] == "abc123_1700000000000"
        assert payload["method"] == "bcrypt_direct_salt"
        assert payload["timestamp_ms"] == 1700000000000
        assert payload["timestamp_readable"] == "2023-11-14T22:13:20.000Z"

        verify_response = client.post(
            "/verify-signature",
            json={**body, "signature": payload["signature"]},
        )
        assert verify_response.status_code == 200
        result = verify_response.json()
        assert result["valid"] is True
        assert result["password_used"] == "abc123_1700000000000"
        assert result["mode"] == "direct_salt"

    def test_verify_rejects_changed_timestamp(self, client, sample_body):
        signature = client.post("/naver-signature", json=sample_body).json()["signature"]

        result = client.post(
            "/verify-signature",
            json={**sample_body, "timestamp": "1700000000001", "signature": signature},
        ).json()
        assert result["valid"] is False

    def test_base64_mode_returns_bare_string(self, client, sample_body):
        response = client.post("/naver-signature", json={**sample_body, "mode": "base64_wrapped"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")

        decoded = base64.b64decode(response.text).decode("ascii")
        assert decoded.startswith("$2b$04$")
        assert len(decoded) == 60

    def test_generated_salt_mode_envelope(self, client):
        body = {
            "client_id": "abc123",
            "timestamp": 1700000000000,
            "client_secret": "plain-shared-secret",
            "mode": "generated_salt",
        }
        payload = client.post("/naver-signature", json=body).json()
        assert payload["method"] == "bcrypt_with_generated_salt"
        assert payload["signature"].startswith("$2b$04$")
        assert payload["timestamp"] == "1700000000000"

        result = client.post(
            "/verify-signature",
            json={**body, "signature": payload["signature"]},
        ).json()
        assert result["valid"] is True
        assert result["mode"] == "generated_salt"

    def test_mode_override_disabled(self, settings, sample_body):
        settings.allow_mode_override = False
        with TestClient(create_app(settings)) as test_client:
            response = test_client.post(
                "/naver-signature",
                json={**sample_body, "mode": "base64_wrapped"},
            )
        assert response.json()["method"] == "bcrypt_direct_salt"

    def test_missing_client_secret(self, client):
        response = client.post(
            "/naver-signature",
            json={"client_id": "abc123", "timestamp": "1700000000000"},
        )
        assert response.status_code == 400
        payload = response.json()
        assert payload["error"] == "Missing required parameters"
        assert payload["received"] == {
            "client_id": True,
            "timestamp": True,
            "client_secret": False,
        }

    def test_verify_missing_signature(self, client, sample_body):
        response = client.post("/verify-signature", json=sample_body)
        assert response.status_code == 400
        payload = response.json()
        assert payload["code"] == "missing_parameter"
        assert payload["error"] == "Missing required parameters for verification"
        assert payload["received"]["signature"] is False

    def test_invalid_timestamp(self, client, sample_body):
        response = client.post(
            "/naver-signature",
            json={**sample_body, "timestamp": "yesterday"},
        )
        assert response.status_code == 400
        payload = response.json()
        assert payload["error"] == "Invalid timestamp format"
        assert payload["received"] == "yesterday"

    def test_invalid_salt(self, client, sample_body):
        response = client.post(
            "/naver-signature",
            json={**sample_body, "client_secret": "plain-shared-secret"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_salt"

    def test_salt_with_trailing_newline(self, client, sample_body):
        response = client.post(
            "/naver-signature",
            json={**sample_body, "client_secret": sample_body["client_secret"] + "\n"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_salt"

    def test_strict_timestamp_with_trailing_newline(self, client, sample_body):
        response = client.post(
            "/naver-signature",
            json={**sample_body, "timestamp": "1700000000000\n"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_timestamp"

    def test_invalid_json(self, client):
        response = client.post(
            "/naver-signature",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_json"

    def test_non_object_body(self, client):
        response = client.post("/naver-signature", json=["abc123"])
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_json"

    def test_unknown_mode(self, client, sample_body):
        response = client.post("/naver-signature", json={**sample_body, "mode": "md5"})
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_mode"

    def test_hash_failure_is_500(self, client):
        body = {
            "client_id": "c" * 60,
            "timestamp": "1700000000000",
            "client_secret": "s" * 20,
            "mode": "generated_salt",
        }
        response = client.post("/naver-signature", json=body)
        assert response.status_code == 500
        payload = response.json()
        assert payload["error"] == "Failed to generate signature"
        assert "stack" not in payload

    def test_hash_failure_includes_stack_in_development(self, settings):
        settings.environment = "development"
        body = {
            "client_id": "c" * 60,
            "timestamp": "1700000000000",
            "client_secret": "s" * 20,
            "mode": "generated_salt",
        }
        with TestClient(create_app(settings)) as test_client:
            payload = test_client.post("/naver-signature", json=body).json()
        assert "HashComputationError" in payload["stack"]

    def test_unhandled_error(self, settings, sample_body, monkeypatch):
        def explode(*_args):
            raise RuntimeError("boom")

        monkeypatch.setattr(server_main, "generate", explode)
        with TestClient(create_app(settings), raise_server_exceptions=False) as test_client:
            response = test_client.post("/naver-signature", json=sample_body)

        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"

    def test_hash_timeout(self, settings, sample_body, monkeypatch):
        def slow(*_args):
            time.sleep(0.5)

        settings.hash_timeout_seconds = 0.05
        monkeypatch.setattr(server_main, "generate", slow)
        with TestClient(create_app(settings)) as test_client:
            response = test_client.post("/naver-signature", json=sample_body)

        assert response.status_code == 503
        assert response.json()["code"] == "hash_timeout"

    def test_metrics_count_signatures(self, client, sample_body):
        client.post("/naver-signature", json=sample_body)
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "naversign_signatures_total" in response.text


class _ConcurrencyTracker:
    """Blocking callable that records how many copies run at once."""

    def __init__(self, duration: float):
        self.duration = duration
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.duration)
        finally:
            with self._lock:
                self.active -= 1
        return "done"


@pytest.mark.asyncio
async def test_run_hash_is_bounded_by_workers(settings):
    server = SignatureServer(settings)
    await server.startup()
    try:
        assert await server._run_hash(sum, [1, 2, 3]) == 6

        tracker = _ConcurrencyTracker(0.05)
        results = await asyncio.gather(*(server._run_hash(tracker) for _ in range(6)))

        assert results == ["done"] * 6
        assert tracker.peak <= settings.hash_workers
    finally:
        await server.shutdown()


@pytest.mark.asyncio
async def test_timed_out_hash_keeps_its_worker(settings):
    settings.hash_workers = 1
    settings.hash_timeout_seconds = 0.05
    server = SignatureServer(settings)
    await server.startup()
    try:
        tracker = _ConcurrencyTracker(0.3)
        results = await asyncio.gather(
            *(server._run_hash(tracker) for _ in range(4)),
            return_exceptions=True,
        )

        assert all(isinstance(result, TimeoutError) for result in results)
        await asyncio.sleep(0.4)
        assert tracker.peak == 1
        assert tracker.active == 0
    finally:
        await server.shutdown()
