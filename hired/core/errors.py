"""Error taxonomy and optional FastAPI handlers.

Every error carries a human-readable message and a stable machine code.
QuotaExceededError additionally carries structured fields so presentation
layers can render upgrade messaging without parsing the message.
"""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.requests import Request

from hired.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    @property
    def details(self) -> Dict[str, Any]:
        return {}

    def to_payload(self, request_id: Optional[str] = None) -> dict:
        rid = request_id or self.request_id or get_request_id()
        error: Dict[str, Any] = {"code": self.code, "message": self.message, "request_id": rid}
        if self.details:
            error["details"] = self.details
        return {"error": error, "detail": self.message}


class NotAuthenticatedError(AppError):
    code = "not_authenticated"
    status_code = 401

    def __init__(self, message: str = "No authenticated user", **kwargs):
        super().__init__(message, **kwargs)


class AuthenticationFailedError(AppError):
    code = "authentication_failed"
    status_code = 401


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class ProfileNotFoundError(NotFoundError):
    code = "profile_not_found"


class PlanNotFoundError(NotFoundError):
    code = "plan_not_found"


class SimulationNotFoundError(NotFoundError):
    code = "simulation_not_found"


class AttemptNotFoundError(NotFoundError):
    code = "attempt_not_found"


class QuotaExceededError(AppError):
    code = "quota_exceeded"
    status_code = 403

    def __init__(self, used: int, limit: int, plan_name: str, *, message: Optional[str] = None, **kwargs):
        self.used = used
        self.limit = limit
        self.plan_name = plan_name
        super().__init__(
            message
            or (
                f"You have reached the limit of {limit} simulations per month on the {plan_name} plan. "
                "Upgrade your plan to keep practicing."
            ),
            **kwargs,
        )

    @property
    def details(self) -> Dict[str, Any]:
        return {"used": self.used, "limit": self.limit, "plan_name": self.plan_name}


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class InvalidTransitionError(ConflictError):
    code = "invalid_transition"


class AttemptAlreadyInProgressError(ConflictError):
    code = "attempt_in_progress"

    def __init__(self, message: str, *, attempt_id: Optional[str] = None, **kwargs):
        self.attempt_id = attempt_id
        super().__init__(message, **kwargs)

    @property
    def details(self) -> Dict[str, Any]:
        return {"attempt_id": self.attempt_id} if self.attempt_id else {}


class StoreUnavailableError(AppError):
    code = "store_unavailable"
    status_code = 503


class UnknownError(AppError):
    code = "unknown_error"
    status_code = 500

    def __init__(self, message: str = "Unexpected error", **kwargs):
        super().__init__(message, **kwargs)


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or get_request_id()
        or fallback
        or str(uuid4())
    )


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = exc.to_payload(rid)
    logger = logging.getLogger("hired")
    # Quota and auth outcomes are expected, not faults
    log_level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("hired")
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": UnknownError.code})
    response = JSONResponse(status_code=UnknownError.status_code, content=UnknownError().to_payload(rid))
    response.headers["x-request-id"] = rid
    return response


def install_error_handlers(app: FastAPI) -> None:
    """Register the AppError and catch-all handlers on a host FastAPI application."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
