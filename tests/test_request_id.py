"""Tests for request ID middleware."""

import uuid

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from captiongate.app.core.logging import ContextFilter, get_logger
from captiongate.app.middleware.request_id import (
    MAX_REQUEST_ID_LENGTH,
    RequestIdMiddleware,
    get_request_id,
)


@pytest.fixture
def client():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/echo")
    async def echo(request: Request):
        get_logger("tests.request_id").info("serving echo")
        return {"request_id": get_request_id(request)}

    return TestClient(app)


class TestRequestIdMiddleware:
    """Test request ID propagation."""

    def test_generates_uuid(self, client):
        resp = client.get("/echo")

        request_id = resp.headers["X-Request-ID"]
        assert str(uuid.UUID(request_id)) == request_id
        assert resp.json()["request_id"] == request_id

    def test_uses_incoming_header(self, client):
        resp = client.get("/echo", headers={"X-Request-ID": "req-abc-123"})

        assert resp.headers["X-Request-ID"] == "req-abc-123"
        assert resp.json()["request_id"] == "req-abc-123"

    def test_overlong_header_is_replaced(self, client):
        incoming = "x" * (MAX_REQUEST_ID_LENGTH + 1)
        resp = client.get("/echo", headers={"X-Request-ID": incoming})

        assert resp.headers["X-Request-ID"] != incoming
        uuid.UUID(resp.headers["X-Request-ID"])

    def test_blank_header_is_replaced(self, client):
        resp = client.get("/echo", headers={"X-Request-ID": "   "})
        uuid.UUID(resp.headers["X-Request-ID"])

    def test_unique_per_request(self, client):
        ids = {client.get("/echo").headers["X-Request-ID"] for _ in range(5)}
        assert len(ids) == 5

    def test_log_records_carry_request_id(self, client, caplog):
        caplog.handler.addFilter(ContextFilter())
        with caplog.at_level("INFO", logger="tests.request_id"):
            client.get("/echo", headers={"X-Request-ID": "req-logged"})

        records = [r for r in caplog.records if r.getMessage() == "serving echo"]
        assert records[-1].request_id == "req-logged"


class TestGetRequestId:
    def test_unknown_outside_middleware(self):
        app = FastAPI()

        @app.get("/plain")
        async def plain(request: Request):
            return {"request_id": get_request_id(request)}

        assert TestClient(app).get("/plain").json() == {"request_id": "unknown"}
