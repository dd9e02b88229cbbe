"""Tests for the error envelope and exception handlers.

Every error response has the shape:
{
    "status": "error",
    "error": {"code": "<stable_code>", "message": "...", "details": ...},
    "request_id": "<uuid>"
}
Emergency-lockdown responses also carry a top-level ``emergencyLockdown``.
"""

import json

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel, ValidationError

from hostelgate.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from hostelgate.api.schemas import Envelope, ErrorBody
from hostelgate.service.errors import (
    ConflictError,
    CsrfError,
    EmergencyLockdownError,
    RateLimitedError,
    TabContextError,
)
from hostelgate.storage.errors import StoreUnavailable


class TestErrorBody:
    def test_known_codes_accepted(self):
        for code in ("csrf_invalid", "emergency_lockdown", "service_unavailable"):
            assert ErrorBody(code=code, message="x").code == code

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="quota_exceeded", message="Too many requests")

    def test_details_may_be_list_or_dict(self):
        assert ErrorBody(code="validation_error", message="x", details=[1, 2]).details == [1, 2]
        assert ErrorBody(code="not_found", message="x", details={"id": 1}).details == {"id": 1}


class TestEnvelope:
    def test_request_id_generated(self):
        envelope = Envelope(status="ok")
        assert len(envelope.request_id) == 36

    def test_status_restricted(self):
        with pytest.raises(ValidationError):
            Envelope(status="success")


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (403, "forbidden"),
            (404, "not_found"),
            (409, "conflict"),
            (422, "validation_error"),
            (429, "rate_limited"),
            (503, "service_unavailable"),
            (418, "server_error"),
        ],
    )
    def test_code_for_status(self, status, code):
        assert _error_code_for_status(status) == code

    def test_mapping_only_uses_valid_codes(self):
        for code in _STATUS_TO_CODE.values():
            ErrorBody(code=code, message="ok")

    def test_lockdown_flag_is_top_level(self):
        response = _error_response(
            503, "locked", {"emergencyLockdown": True}, code="emergency_lockdown",
            emergency_lockdown=True,
        )
        body = json.loads(response.body)
        assert body["emergencyLockdown"] is True
        assert body["error"]["code"] == "emergency_lockdown"

    def test_plain_errors_have_no_lockdown_flag(self):
        body = json.loads(_error_response(404, "missing").body)
        assert "emergencyLockdown" not in body
        assert body["error"]["details"] is None


class _Payload(BaseModel):
    count: int


@pytest.fixture
def client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/csrf")
    async def csrf():
        raise CsrfError("CSRF token invalid")

    @app.get("/tab")
    async def tab():
        raise TabContextError("Session does not belong to this tab")

    @app.get("/conflict")
    async def conflict():
        raise ConflictError("Cannot deactivate your own account", detail={"user_id": "a1"})

    @app.get("/lockdown")
    async def lockdown():
        raise EmergencyLockdownError()

    @app.get("/limited")
    async def limited():
        raise RateLimitedError(retry_after=42)

    @app.get("/store")
    async def store():
        raise StoreUnavailable("connection refused", detail={"host": "redis"})

    @app.get("/http")
    async def http():
        raise HTTPException(status_code=404, detail="gone")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    @app.post("/validate")
    async def validate(payload: _Payload):
        return {"ok": True}

    return TestClient(app, raise_server_exceptions=False)


class TestHandlers:
    def test_csrf_error(self, client):
        response = client.get("/csrf")
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "csrf_invalid"

    def test_tab_mismatch_is_unauthorized(self, client):
        response = client.get("/tab")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_conflict_keeps_details(self, client):
        body = client.get("/conflict").json()
        assert body["error"]["details"] == {"user_id": "a1"}

    def test_lockdown(self, client):
        response = client.get("/lockdown")
        assert response.status_code == 503
        body = response.json()
        assert body["emergencyLockdown"] is True
        assert body["status"] == "error"

    def test_store_outage_is_503_without_internals(self, client):
        response = client.get("/store")
        assert response.status_code == 503
        body = response.json()
        assert body["error"]["code"] == "service_unavailable"
        assert "redis" not in json.dumps(body)

    def test_rate_limited_sets_retry_after(self, client):
        response = client.get("/limited")
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "42"
        body = response.json()
        assert body["error"]["code"] == "rate_limited"
        assert body["error"]["details"] == {"retry_after": 42}

    def test_http_exception(self, client):
        response = client.get("/http")
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "gone"

    def test_validation_error_is_400(self, client):
        response = client.post("/validate", json={"count": "many"})
        assert response.status_code == 400
        details = response.json()["error"]["details"]
        assert details[0]["loc"][-1] == "count"

    def test_unhandled_exception_is_opaque(self, client):
        response = client.get("/boom")
        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "server_error"
        assert "secret" not in body["error"]["message"]
