from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from academy.config import load_settings
from academy.services.errors import AccessDeniedError, DomainError, NotFoundError

logger = logging.getLogger(__name__)

# Path parameters that identify a single resource; used to decide concealment.
_RESOURCE_PARAMS = {"assessment_id", "player_id"}


def error_body(
    *,
    error: str,
    message: str,
    code: str,
    status_code: int,
    path: str,
    validation_errors: list[str] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "error": error,
        "message": message,
        "errorCode": code,
        "status": status_code,
        "path": path,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if validation_errors:
        body["validationErrors"] = validation_errors
    return body


def _conceal(request: Request, exc: DomainError) -> DomainError:
    if not isinstance(exc, AccessDeniedError):
        return exc
    if not _RESOURCE_PARAMS.intersection(request.path_params):
        return exc
    if not load_settings().conceal_forbidden_resources:
        return exc
    return NotFoundError("Resource not found")


async def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
    logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
    shown = _conceal(request, exc)
    return JSONResponse(
        status_code=shown.status_code,
        content=error_body(
            error=shown.title,
            message=shown.message,
            code=shown.code,
            status_code=shown.status_code,
            path=request.url.path,
        ),
    )


async def handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        messages.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            error="Validation Failed",
            message="Request validation failed",
            code="VALIDATION_ERROR",
            status_code=status.HTTP_400_BAD_REQUEST,
            path=request.url.path,
            validation_errors=messages,
        ),
    )


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            error="Internal Server Error",
            message="An unexpected error occurred",
            code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            path=request.url.path,
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, handle_domain_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)
