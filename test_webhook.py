"""
Tests for request gating in the webhook receiver.

Tests cover:
- Valid signature reaches the handler (200)
- Missing/invalid signature and expired requests (401)
- Invalid timestamp (400)
- Oversized bodies, chunked or not (413)
- Malformed Content-Length and client disconnects (400)
- Exempt health and metrics routes, missing signing key (503)
- The per-route FastAPI dependency
"""

import asyncio
import base64
import hashlib
import hmac
import time

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from messagebird_signature.config import Settings, get_settings
from messagebird_signature.main import create_app
from messagebird_signature.errors import BodyReadFailure, ErrorKind
from messagebird_signature.middleware import read_signed_request, require_signature
from messagebird_signature.verifier import SignatureVerifier


TEST_SIGNING_KEY = get_settings().SIGNING_KEY

BODY = '{"id":"e8077d803532c0b5937c639b60216938","status":"delivered"}'


def compute_signature(timestamp: str, canonical_query: str, body: str, key: str) -> str:
    """Compute the base64 HMAC-SHA256 signature for a canonical query."""
    payload = f"{timestamp}\n{canonical_query}\n".encode("utf-8") + hashlib.sha256(body.encode("utf-8")).digest()
    digest = hmac.new(key.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def signed_headers(body: str = BODY, canonical_query: str = "", timestamp: str = None, key: str = TEST_SIGNING_KEY) -> dict:
    """Headers for a request signed now (or at the given timestamp)."""
    timestamp = timestamp or str(int(time.time()))
    return {
        "Content-Type": "application/json",
        "MessageBird-Request-Timestamp": timestamp,
        "MessageBird-Signature": compute_signature(timestamp, canonical_query, body, key),
    }


def verification_count(result: str) -> float:
    return REGISTRY.get_sample_value("signature_verifications_total", {"result": result}) or 0.0


@pytest.fixture(scope="function")
def client():
    """Create test client for a receiver configured with the test key."""
    app = create_app(Settings(SIGNING_KEY=TEST_SIGNING_KEY, LOG_LEVEL="WARNING"))

    with TestClient(app) as test_client:
        yield test_client


class TestWebhookValidSignature:
    """Test webhook with valid signatures."""

    def test_chunked_body_accepted(self, client):
        """Test that a chunked body is verified and still readable by the handler."""
        chunks = [BODY[i:i + 8].encode("utf-8") for i in range(0, len(BODY), 8)]

        response = client.post("/webhook", content=iter(chunks), headers=signed_headers())

        assert response.status_code == 200

    def test_signed_request_accepted(self, client):
        """Test that a correctly signed request reaches the handler."""
        response = client.post("/webhook", content=BODY, headers=signed_headers())

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert "X-Request-ID" in response.headers

    def test_signed_request_with_query(self, client):
        """Test that query parameters are signed in sorted order."""
        headers = signed_headers(canonical_query="id=abc&recipient=31612345678")

        response = client.post(
            "/webhook?recipient=31612345678&id=abc",
            content=BODY,
            headers=headers
        )

        assert response.status_code == 200

    def test_status_datetime_with_raw_space(self, client):
        """Test that statusDatetime sent with %20 verifies against the '+' signed form."""
        headers = signed_headers(canonical_query="statusDatetime=2021-01-07%2B06%3A13%3A20")

        response = client.post(
            "/webhook?statusDatetime=2021-01-07%2006:13:20",
            content=BODY,
            headers=headers
        )

        assert response.status_code == 200

    def test_empty_body(self, client):
        """Test that a signed request without body is accepted."""
        response = client.post("/webhook", headers=signed_headers(body=""))

        assert response.status_code == 200

    def test_valid_outcome_counted(self, client):
        """Test that accepted requests increment the verification counter."""
        before = verification_count("valid")

        client.post("/webhook", content=BODY, headers=signed_headers())

        assert verification_count("valid") == before + 1


class TestWebhookRejected:
    """Test webhook with missing, invalid or stale signatures."""

    def test_missing_signature_header(self, client):
        """Test request without MessageBird-Signature returns 401."""
        headers = signed_headers()
        del headers["MessageBird-Signature"]

        response = client.post("/webhook", content=BODY, headers=headers)

        assert response.status_code == 401
        assert response.json() == {
            "detail": 'The "MessageBird-Signature" header is missing.',
            "code": "missing_signature_header",
        }

    def test_missing_timestamp_header(self, client):
        """Test request without MessageBird-Request-Timestamp returns 401."""
        headers = signed_headers()
        del headers["MessageBird-Request-Timestamp"]

        response = client.post("/webhook", content=BODY, headers=headers)

        assert response.status_code == 401
        assert response.json()["code"] == "missing_timestamp_header"

    def test_signature_with_different_body(self, client):
        """Test signature computed for a different body returns 401."""
        headers = signed_headers(body='{"id":"other"}')

        response = client.post("/webhook", content=BODY, headers=headers)

        assert response.status_code == 401
        assert response.json() == {"detail": "Signatures not match.", "code": "signature_mismatch"}

    def test_signature_with_different_query(self, client):
        """Test that an added query parameter breaks the signature."""
        response = client.post("/webhook?id=injected", content=BODY, headers=signed_headers())

        assert response.status_code == 401
        assert response.json()["code"] == "signature_mismatch"

    def test_signature_with_different_secret(self, client):
        """Test signature computed with a different key returns 401."""
        response = client.post("/webhook", content=BODY, headers=signed_headers(key="wrong_secret"))

        assert response.status_code == 401
        assert response.json()["code"] == "signature_mismatch"

    def test_garbage_signature(self, client):
        """Test that a non-base64 signature is a plain mismatch."""
        headers = signed_headers()
        headers["MessageBird-Signature"] = "invalid_signature_123"

        response = client.post("/webhook", content=BODY, headers=headers)

        assert response.status_code == 401
        assert response.json()["code"] == "signature_mismatch"

    def test_expired_request(self, client):
        """Test that a correctly signed request older than 100 seconds returns 401."""
        timestamp = str(int(time.time()) - 101)

        response = client.post("/webhook", content=BODY, headers=signed_headers(timestamp=timestamp))

        assert response.status_code == 401
        assert response.json() == {"detail": "Request expired.", "code": "request_expired"}

    def test_invalid_timestamp(self, client):
        """Test that a signed but unparseable timestamp returns 400."""
        response = client.post("/webhook", content=BODY, headers=signed_headers(timestamp="not-a-time"))

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_timestamp"

    def test_body_too_large(self):
        """Test that bodies over MAX_BODY_BYTES return 413."""
        app = create_app(Settings(SIGNING_KEY=TEST_SIGNING_KEY, MAX_BODY_BYTES=16, LOG_LEVEL="WARNING"))

        with TestClient(app) as client:
            response = client.post("/webhook", content=BODY, headers=signed_headers())

        assert response.status_code == 413
        assert response.json()["code"] == "body_read_failure"

    def test_chunked_body_too_large(self):
        """Test that a chunked body without Content-Length is still capped with 413."""
        app = create_app(Settings(SIGNING_KEY=TEST_SIGNING_KEY, MAX_BODY_BYTES=16, LOG_LEVEL="WARNING"))
        chunks = [BODY[i:i + 8].encode("utf-8") for i in range(0, len(BODY), 8)]

        with TestClient(app) as client:
            response = client.post("/webhook", content=iter(chunks), headers=signed_headers())

        assert response.status_code == 413
        assert response.json()["code"] == "body_read_failure"

    def test_malformed_content_length(self, client):
        """Test that a non-integer Content-Length returns 400."""
        headers = signed_headers()
        headers["Content-Length"] = "abc"

        response = client.post("/webhook", content=BODY, headers=headers)

        assert response.status_code == 400
        assert response.json() == {
            "detail": "Invalid Content-Length header.",
            "code": "body_read_failure",
        }

    def test_out_of_range_timestamp(self, client):
        """Test that a signed timestamp of thousands of digits returns 400."""
        response = client.post("/webhook", content=BODY, headers=signed_headers(timestamp="9" * 5000))

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_timestamp"

    def test_rejected_outcome_counted(self, client):
        """Test that rejections are counted by kind."""
        before = verification_count("signature_mismatch")

        client.post("/webhook", content=BODY, headers=signed_headers(key="wrong_secret"))

        assert verification_count("signature_mismatch") == before + 1


class TestExemptRoutes:
    """Test routes that bypass the signature gate."""

    def test_health_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_metrics(self, client):
        """Test that metrics are exposed without a signature."""
        client.post("/webhook", content=BODY, headers=signed_headers())

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "signature_verifications_total" in response.text


class TestWithoutSigningKey:
    """Test a receiver started without MESSAGEBIRD_SIGNING_KEY."""

    @pytest.fixture
    def unconfigured_client(self):
        app = create_app(Settings(SIGNING_KEY="", LOG_LEVEL="WARNING"))

        with TestClient(app) as test_client:
            yield test_client

    def test_not_ready(self, unconfigured_client):
        response = unconfigured_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_webhook_unavailable(self, unconfigured_client):
        """Test that no request passes the gate without a key."""
        response = unconfigured_client.post("/webhook", content=BODY, headers=signed_headers())

        assert response.status_code == 503


class TestRequireSignatureDependency:
    """Test gating a single route with the FastAPI dependency."""

    @pytest.fixture
    def dependency_client(self):
        app = FastAPI()
        gate = require_signature(SignatureVerifier(TEST_SIGNING_KEY))

        @app.post("/hook", dependencies=[Depends(gate)])
        async def hook(request: Request):
            body = await request.body()
            return {"received": body.decode("utf-8")}

        @app.get("/open")
        async def open_route():
            return {"status": "ok"}

        with TestClient(app) as test_client:
            yield test_client

    def test_valid_request_and_body_still_readable(self, dependency_client):
        """Test that the handler can read the body after verification."""
        response = dependency_client.post("/hook", content=BODY, headers=signed_headers())

        assert response.status_code == 200
        assert response.json() == {"received": BODY}

    def test_invalid_request(self, dependency_client):
        response = dependency_client.post("/hook", content=BODY, headers=signed_headers(key="wrong_secret"))

        assert response.status_code == 401
        assert response.json() == {"detail": "Signatures not match."}

    def test_ungated_route(self, dependency_client):
        response = dependency_client.get("/open")

        assert response.status_code == 200


class TestReadSignedRequest:
    """Test body reading directly against ASGI messages."""

    @staticmethod
    def make_request(chunks, headers=None):
        """Build a request whose body arrives in the given chunks; returns (request, received)."""
        messages = [
            {"type": "http.request", "body": chunk, "more_body": index < len(chunks) - 1}
            for index, chunk in enumerate(chunks)
        ]
        received = []

        async def receive():
            if messages:
                message = messages.pop(0)
                received.append(message)
                return message
            return {"type": "http.disconnect"}

        scope = {
            "type": "http",
            "method": "POST",
            "path": "/webhook",
            "query_string": b"b=2&a=1",
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in (headers or {}).items()
            ],
        }
        return Request(scope, receive), received

    def test_stops_reading_once_limit_exceeded(self):
        """Test that reading stops at the first chunk over the limit."""
        request, received = self.make_request([b"x" * 10] * 10)

        with pytest.raises(BodyReadFailure) as exc_info:
            asyncio.run(read_signed_request(request, max_body_bytes=16))

        assert exc_info.value.status_code == 413
        assert len(received) == 2

    def test_body_cached_for_downstream(self):
        """Test that the streamed body can be read again afterwards."""
        request, received = self.make_request([b"hello ", b"world"], headers={"X-Test": "1"})

        signed_request = asyncio.run(read_signed_request(request))

        assert signed_request.raw_body == b"hello world"
        assert signed_request.query == [("b", "2"), ("a", "1")]
        assert signed_request.header("x-test") == "1"
        assert asyncio.run(request.body()) == b"hello world"
        assert len(received) == 2

    def test_client_disconnect(self):
        """Test that a disconnect before the body arrives returns 400."""
        request, _ = self.make_request([])

        with pytest.raises(BodyReadFailure) as exc_info:
            asyncio.run(read_signed_request(request))

        assert exc_info.value.status_code == 400
        assert exc_info.value.kind == ErrorKind.BODY_READ_FAILURE

    def test_malformed_content_length(self):
        """Test that a non-integer Content-Length is rejected before reading."""
        request, received = self.make_request([b"hello"], headers={"Content-Length": "abc"})

        with pytest.raises(BodyReadFailure) as exc_info:
            asyncio.run(read_signed_request(request))

        assert exc_info.value.status_code == 400
        assert received == []
