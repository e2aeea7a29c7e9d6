from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from runnerhub.errors import (
    ConflictError,
    ExecutionError,
    ForbiddenError,
    NotFoundError,
    RegistrationError,
    RunnerHubError,
)


logger = logging.getLogger(__name__)


@dataclass
class APIError(Exception):
    status_code: int
    code: str
    message: str
    details: dict[str, Any] | None = None


def error_response(*, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> JSONResponse:
    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=int(status_code), content=payload)


def api_error_from_domain(exc: RunnerHubError) -> APIError:
    if isinstance(exc, NotFoundError):
        return APIError(status_code=404, code="not_found", message=str(exc))
    if isinstance(exc, ForbiddenError):
        return APIError(status_code=403, code="forbidden", message=str(exc))
    if isinstance(exc, ConflictError):
        return APIError(status_code=409, code="conflict", message=str(exc), details=exc.details or None)
    if isinstance(exc, RegistrationError):
        return APIError(
            status_code=502,
            code="registration_failed",
            message=str(exc),
            details={"compensated": exc.compensated},
        )
    if isinstance(exc, ExecutionError):
        # stderr can echo secrets passed on the command line; keep it in server logs only.
        return APIError(
            status_code=502,
            code="execution_failed",
            message=str(exc),
            details={"timed_out": exc.timed_out, "returncode": exc.returncode},
        )
    return APIError(status_code=500, code="internal", message=str(exc))


async def api_error_handler(_req: Request, exc: APIError) -> JSONResponse:
    return error_response(
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


async def domain_error_handler(_req: Request, exc: RunnerHubError) -> JSONResponse:
    err = api_error_from_domain(exc)
    return error_response(status_code=err.status_code, code=err.code, message=err.message, details=err.details)


async def value_error_handler(_req: Request, exc: ValueError) -> JSONResponse:
    return error_response(status_code=400, code="invalid_argument", message=str(exc))


async def validation_error_handler(_req: Request, exc: RequestValidationError) -> JSONResponse:
    # Normalize Pydantic validation errors into our contract envelope.
    return error_response(
        status_code=400,
        code="invalid_argument",
        message="Request validation failed.",
        details={"errors": exc.errors()},
    )


async def unhandled_error_handler(_req: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error", exc_info=exc)
    return error_response(
        status_code=500,
        code="internal",
        message="Internal server error.",
        details={"type": type(exc).__name__},
    )
