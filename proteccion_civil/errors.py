"""
Error envelopes for the HTTP API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

MISSING_FIELDS = "Faltan campos requeridos"
QUERY_FAILED = "Error en la consulta"
ROUTE_NOT_FOUND = "Ruta no encontrada"


class ApiError(Exception):
    """Raised by handlers; rendered as `{success: false, message, error?}`."""

    def __init__(self, status_code: int, message: str, error: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.error = error


def error_envelope(
    status_code: int, message: str, error: Optional[str] = None
) -> JSONResponse:
    content = {"success": False, "message": message}
    if error is not None:
        content["error"] = error
    return JSONResponse(status_code=status_code, content=content)


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return error_envelope(exc.status_code, exc.message, exc.error)


async def _http_error_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Unknown paths and unsupported methods on known paths look the same.
    if exc.status_code in (404, 405):
        return error_envelope(404, ROUTE_NOT_FOUND)
    return error_envelope(exc.status_code, str(exc.detail))


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.info("Cuerpo rechazado en %s: %s", request.url.path, exc.errors())
    return error_envelope(400, MISSING_FIELDS)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
