"""
Tests for the error contract, configuration validation and structured logging.
"""
import json
import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import ValidationError as PydanticValidationError

from hired.core.config import Settings, validate_config
from hired.core.errors import (
    AppError,
    AttemptAlreadyInProgressError,
    InvalidTransitionError,
    NotAuthenticatedError,
    QuotaExceededError,
    StoreUnavailableError,
    UnknownError,
    install_error_handlers,
)
from hired.core.logging import JsonFormatter, bind_request_id, get_request_id, log_event, request_id_ctx_var


def make_app():
    app = FastAPI()
    install_error_handlers(app)

    @app.get("/admit")
    async def admit():
        raise QuotaExceededError(used=3, limit=3, plan_name="Free")

    @app.get("/me")
    async def me():
        raise NotAuthenticatedError()

    @app.get("/store")
    async def store():
        raise StoreUnavailableError("Record store unavailable")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("scoring table missing")

    return app


def test_quota_exceeded_payload_has_structured_fields():
    client = TestClient(make_app())
    resp = client.get("/admit", headers={"x-request-id": "rid-123"})

    assert resp.status_code == 403
    body = resp.json()
    assert body["error"]["code"] == "quota_exceeded"
    assert body["error"]["request_id"] == "rid-123"
    assert body["error"]["details"] == {"used": 3, "limit": 3, "plan_name": "Free"}
    assert "3 simulations per month" in body["error"]["message"]
    assert resp.headers["x-request-id"] == "rid-123"


def test_error_status_codes():
    client = TestClient(make_app())
    not_auth = client.get("/me")
    assert not_auth.status_code == 401
    assert not_auth.json()["error"]["code"] == "not_authenticated"
    assert not_auth.headers.get("x-request-id")

    unavailable = client.get("/store")
    assert unavailable.status_code == 503
    assert "details" not in unavailable.json()["error"]


def test_unexpected_errors_use_unknown_envelope():
    client = TestClient(make_app(), raise_server_exceptions=False)
    resp = client.get("/boom", headers={"x-request-id": "rid-boom"})

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "unknown_error"
    assert body["error"]["request_id"] == "rid-boom"
    # Internal detail stays in the log
    assert "scoring table" not in body["error"]["message"]
    assert UnknownError().message == "Unexpected error"


def test_error_taxonomy():
    assert issubclass(InvalidTransitionError, AppError)
    assert InvalidTransitionError("x").status_code == 409
    err = AttemptAlreadyInProgressError("busy", attempt_id="a-1")
    assert err.to_payload("rid")["error"]["details"] == {"attempt_id": "a-1"}
    assert NotAuthenticatedError().message == "No authenticated user"


def test_payload_uses_bound_request_id():
    token = bind_request_id("bound-rid")
    try:
        payload = QuotaExceededError(used=1, limit=1, plan_name="Free").to_payload()
    finally:
        request_id_ctx_var.reset(token)
    assert payload["error"]["request_id"] == "bound-rid"
    assert get_request_id() is None


def test_validate_config_warns_when_not_strict(caplog):
    cfg = Settings(_env_file=None, DATABASE_URL=None, AUTH_JWT_SECRET=None)
    with caplog.at_level(logging.WARNING, logger="hired"):
        assert validate_config(strict=False, settings_obj=cfg) is True
    assert any("DATABASE_URL" in r.getMessage() for r in caplog.records)


def test_validate_config_strict_raises():
    cfg = Settings(_env_file=None, DATABASE_URL=None, AUTH_JWT_SECRET="s")
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        validate_config(strict=True, settings_obj=cfg)

    bad_ratio = Settings(_env_file=None, DATABASE_URL="sqlite+aiosqlite://", AUTH_JWT_SECRET="s",
                         QUOTA_APPROACHING_RATIO=1.5)
    with pytest.raises(RuntimeError, match="QUOTA_APPROACHING_RATIO"):
        validate_config(strict=True, settings_obj=bad_ratio)


def test_settings_reject_unknown_duplicate_policy():
    with pytest.raises(PydanticValidationError):
        Settings(_env_file=None, DUPLICATE_ATTEMPT_POLICY="sometimes")


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("DUPLICATE_ATTEMPT_POLICY", "resume")
    monkeypatch.setenv("UPGRADE_REDIRECT", "/pricing")
    cfg = Settings(_env_file=None)
    assert cfg.DUPLICATE_ATTEMPT_POLICY == "resume"
    assert cfg.UPGRADE_REDIRECT == "/pricing"


def test_json_formatter_keeps_structured_fields():
    record = logging.LogRecord("hired", logging.INFO, __file__, 1, "admission.admitted", None, None)
    record.request_id = "rid-1"
    record.identity_id = "user-1"
    record.attempt_id = "attempt-1"
    record.unrelated = "dropped"

    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "admission.admitted"
    assert payload["identity_id"] == "user-1"
    assert payload["attempt_id"] == "attempt-1"
    assert payload["request_id"] == "rid-1"
    assert "unrelated" not in payload


def test_log_event_truncates_and_correlates(caplog):
    token = bind_request_id("rid-log")
    try:
        with caplog.at_level(logging.INFO, logger="hired"):
            log_event("info", "test.event", identity_id="user-9", extra={"blob": "x" * 2000})
    finally:
        request_id_ctx_var.reset(token)

    record = next(r for r in caplog.records if r.getMessage() == "test.event")
    assert record.request_id == "rid-log"
    assert record.identity_id == "user-9"
    assert record.blob.endswith("...<truncated>")
    assert len(record.blob) < 600
