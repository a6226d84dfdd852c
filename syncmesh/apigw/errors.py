"""Gestion standardisée des erreurs API avec enveloppes d'erreur.

Ce module fournit une gestion centralisée des erreurs: enveloppe JSON `{code, message,
trace_id, details}`, conversion des erreurs de synchronisation du domaine en statuts HTTP et
enregistrement des handlers sur l'application.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from syncmesh.domain import errors as sync_errors

log = structlog.get_logger(__name__).bind(component="apigw")


@dataclass
class ErrorEnvelope:
    """Standard error envelope for API responses."""

    code: str
    message: str
    trace_id: str | None = None
    details: dict[str, Any] | None = None


class APIError(HTTPException):
    """Custom API error with standard envelope."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        trace_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message)
        self.code = code
        self.message = message
        self.trace_id = trace_id
        self.details = details


class ErrorCodes:
    """Standard error codes for the API."""

    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_GATEWAY = "BAD_GATEWAY"
    GATEWAY_TIMEOUT = "GATEWAY_TIMEOUT"

    # Erreurs de synchronisation
    INVALID_GID = "INVALID_GID"
    REMOTE_UNREACHABLE = "REMOTE_UNREACHABLE"
    DISTRIBUTION_FAILED = "DISTRIBUTION_FAILED"
    INCONSISTENT_STATE = "INCONSISTENT_STATE"
    CONFLICT_POLICY_REQUIRED = "CONFLICT_POLICY_REQUIRED"


# kind du domaine -> (statut HTTP, code)
_SYNC_ERROR_MAP: dict[str, tuple[int, str]] = {
    sync_errors.IDENTITY: (400, ErrorCodes.INVALID_GID),
    sync_errors.CONNECTION: (502, ErrorCodes.REMOTE_UNREACHABLE),
    sync_errors.DISTRIBUTION: (502, ErrorCodes.DISTRIBUTION_FAILED),
    sync_errors.CONSISTENCY: (409, ErrorCodes.INCONSISTENT_STATE),
    sync_errors.CONFLICT: (409, ErrorCodes.CONFLICT_POLICY_REQUIRED),
}

_HTTP_CODES = {
    400: ErrorCodes.BAD_REQUEST,
    404: ErrorCodes.NOT_FOUND,
    409: ErrorCodes.CONFLICT,
    422: ErrorCodes.VALIDATION_ERROR,
    500: ErrorCodes.INTERNAL_ERROR,
    502: ErrorCodes.BAD_GATEWAY,
    504: ErrorCodes.GATEWAY_TIMEOUT,
}


def create_error_response(
    status_code: int,
    code: str,
    message: str,
    trace_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    envelope = ErrorEnvelope(code=code, message=message, trace_id=trace_id, details=details)
    return JSONResponse(
        status_code=status_code,
        content={
            "code": envelope.code,
            "message": envelope.message,
            "trace_id": envelope.trace_id,
            **({"details": envelope.details} if envelope.details else {}),
        },
    )


def extract_trace_id(request: Request) -> str | None:
    """Extract trace ID from request headers or request state."""
    trace_id = request.headers.get("X-Trace-ID")
    if trace_id:
        return trace_id
    return getattr(request.state, "trace_id", None)


def handle_api_error(request: Request, exc: APIError) -> JSONResponse:
    trace_id = extract_trace_id(request) or exc.trace_id
    log.warning("api_error", code=exc.code, status_code=exc.status_code, trace_id=trace_id)
    return create_error_response(exc.status_code, exc.code, exc.message, trace_id, exc.details)


def handle_sync_error(request: Request, exc: sync_errors.SyncError) -> JSONResponse:
    """Convertit une erreur du domaine (identité, connexion, distribution...) en enveloppe."""
    trace_id = extract_trace_id(request)
    status_code, code = _SYNC_ERROR_MAP.get(exc.kind, (500, ErrorCodes.INTERNAL_ERROR))
    log.warning("sync_error", kind=exc.kind, code=code, trace_id=trace_id, error=exc.message)
    details = {k: v for k, v in exc.details.items() if isinstance(v, str | int | float | bool)}
    return create_error_response(status_code, code, exc.message, trace_id,
                                 {"kind": exc.kind, **details})


def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    trace_id = extract_trace_id(request)
    code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
    log.info("http_exception", code=code, status_code=exc.status_code, trace_id=trace_id)
    return create_error_response(exc.status_code, code, str(exc.detail), trace_id)


def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
    trace_id = extract_trace_id(request)
    log.error("unexpected_error", trace_id=trace_id, exception_type=type(exc).__name__,
              exc_info=True)
    return create_error_response(500, ErrorCodes.INTERNAL_ERROR, "An unexpected error occurred",
                                 trace_id)


def register_error_handlers(app: FastAPI) -> None:
    """Enregistre les handlers d'erreurs (ordre: spécifique -> générique)."""
    app.add_exception_handler(APIError, handle_api_error)
    app.add_exception_handler(sync_errors.SyncError, handle_sync_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_generic_exception)
