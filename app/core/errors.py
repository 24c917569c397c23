from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.settings import settings

logger = logging.getLogger(__name__)


class DomainError(ValueError):
    """Base class for errors raised by the service layer."""

    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, message: str, *, details: dict | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code:
            self.code = code

    def __str__(self) -> str:
        return self.message


class LoanValidationError(DomainError):
    status_code = 400
    code = "validation_error"


class LoanNotFoundError(DomainError):
    status_code = 404
    code = "not_found"

    def __init__(self, loan_id: str) -> None:
        super().__init__("Loan application not found", details={"loan_id": loan_id})


class DocumentNotFoundError(DomainError):
    status_code = 404
    code = "not_found"

    def __init__(self, loan_id: str, document_id: int) -> None:
        super().__init__(
            "Document not found",
            details={"loan_id": loan_id, "document_id": document_id},
        )


class InvalidStateError(DomainError):
    status_code = 400
    code = "invalid_state"


class StorageError(DomainError):
    status_code = 502
    code = "storage_error"


class DatabaseError(DomainError):
    status_code = 500
    code = "database_error"


HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    429: "rate_limited",
}


def _status_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _build_response(
    status_code: int,
    code: str,
    message: str,
    details: dict | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    payload = {"code": code, "message": message, "data": None, "details": details or {}}
    return JSONResponse(
        status_code=status_code, content=jsonable_encoder(payload), headers=headers
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
    if isinstance(exc.detail, str) and exc.detail:
        message, details = exc.detail, {}
    else:
        message = _status_phrase(exc.status_code)
        details = {"detail": exc.detail} if exc.detail else {}
    return _build_response(exc.status_code, code, message, details, getattr(exc, "headers", None))


def _field_errors(errors: list[dict]) -> list[dict]:
    fields = []
    for error in errors:
        loc = error.get("loc") or []
        # Drop the request section (body/query/path) from the location
        loc_parts = [str(part) for part in loc if part not in {"body", "query", "path", "form"}]
        fields.append({"field": ".".join(loc_parts), "message": error.get("msg") or "Invalid value"})
    return fields


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields = _field_errors(exc.errors())
    message = "Validation failed"
    if fields:
        first = fields[0]
        message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
    return _build_response(
        status_code=400,
        code="validation_error",
        message=message,
        details={"errors": fields},
    )


async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed with %s: %s", exc.code, exc.message, extra=exc.details)
        details = exc.details if settings.environment == "development" else {}
        return _build_response(exc.status_code, exc.code, exc.message, details)
    return _build_response(exc.status_code, exc.code, exc.message, exc.details)


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Unhandled database error on %s %s", request.method, request.url.path)
    details = {"error": str(exc)} if settings.environment == "development" else {}
    return _build_response(
        status_code=500,
        code="database_error",
        message="Database operation failed",
        details=details,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _build_response(
        status_code=500,
        code="internal_server_error",
        message="Internal server error",
        details={},
    )


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    # slowapi puts the breached limit ("120 per 1 minute") in detail
    return _build_response(
        status_code=429,
        code="rate_limited",
        message="Too many requests",
        details={"limit": exc.detail} if exc.detail else {},
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(DomainError, domain_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
