# bizbase/logging/exception_handlers.py
"""Translate engine exceptions into HTTP responses, logging each one."""

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bizbase.core.exceptions import (
    BusinessObjectNotFoundError,
    QueryValidationError,
    ReferentialIntegrityError,
    SecurityViolationError,
)

logger = logging.getLogger(__name__)


def _error_response(request: Request, status_code: int, exc: Exception) -> JSONResponse:
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def query_validation_exception_handler(request: Request, exc: QueryValidationError):
    return _error_response(request, 400, exc)


async def security_violation_exception_handler(request: Request, exc: SecurityViolationError):
    return _error_response(request, 403, exc)


async def not_found_exception_handler(request: Request, exc: BusinessObjectNotFoundError):
    return _error_response(request, 404, exc)


async def referential_integrity_exception_handler(request: Request, exc: ReferentialIntegrityError):
    return _error_response(request, 409, exc)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors"""
    logger.warning("%s %s -> 422: %s", request.method, request.url.path, exc.errors())

    # Convert errors to a safe format for JSON response
    def convert_error(error):
        if isinstance(error, dict):
            return {k: convert_error(v) for k, v in error.items()}
        elif isinstance(error, list):
            return [convert_error(item) for item in error]
        else:
            return str(error)

    return JSONResponse(status_code=422, content={"detail": convert_error(exc.errors())})


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions and log 4xx/5xx errors"""
    if exc.status_code >= 400:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions"""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
