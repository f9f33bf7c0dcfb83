"""Domain error hierarchy and FastAPI exception handlers.

Services raise ``DomainError`` subclasses and never import FastAPI; the
handlers below translate them into JSON responses with a stable shape::

    {"error": <code>, "detail": <human readable message>, ...details}
"""

from typing import Any, Dict, Optional
import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger("benefit_ledger.errors")


class DomainError(Exception):
    code = "domain_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "detail": self.message}
        body.update(self.details)
        return body


class ValidationError(DomainError):
    code = "validation_error"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class PolicyError(DomainError):
    code = "policy_error"
    http_status = status.HTTP_409_CONFLICT


class InvalidTransitionError(PolicyError):
    code = "invalid_transition"

    def __init__(self, claim_id: str, current: str, action: str):
        super().__init__(
            "invalid transition",
            {"claim_id": claim_id, "current_status": current, "action": action},
        )


class AuthorizationError(DomainError):
    code = "forbidden"
    http_status = status.HTTP_403_FORBIDDEN


class NotFoundError(DomainError):
    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found", {"entity": entity, "id": str(entity_id)})


class LedgerConflictError(DomainError):
    """Raised when the ledger changed between read and write."""

    code = "ledger_conflict"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, employee_id: str, period_id: str):
        super().__init__(
            "ledger changed concurrently; retry the request",
            {"employee_id": employee_id, "period_id": period_id, "retryable": True},
        )


def domain_error_handler(request: Request, exc: DomainError):  # type: ignore
    logger.info("request rejected %s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.http_status, content=jsonable_encoder(exc.to_dict())
    )


def http_error_handler(request: Request, exc):  # type: ignore
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "not_found" if exc.status_code == 404 else "http_error",
            "detail": exc.detail
            if exc.status_code != 404 or exc.detail != "Not Found"
            else f"No route for {request.method} {request.url.path}",
        },
    )


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "detail": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold the raw exception raised inside a validator
    out = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        out.append(err)
    return out


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    logger.exception("unhandled exception")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "detail": "An unexpected error occurred.",
        },
    )
