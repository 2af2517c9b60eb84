"""
Shared API Middleware
======================

Common middleware and exception handlers for the FastAPI application.
"""

import time
import uuid
from typing import Callable
from datetime import datetime, timezone

from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi.responses import JSONResponse

from src.core import (
    ApplicationException,
    AuthorizationException,
    DocumentStorageException,
    ResourceNotFoundException,
    StaleTicketStateException,
    TicketAlreadyResolvedException,
    UnassignableTicketException,
    ValidationException,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Most specific first; the first isinstance match wins
_STATUS_BY_EXCEPTION = (
    (ValidationException, status.HTTP_400_BAD_REQUEST),
    (UnassignableTicketException, status.HTTP_400_BAD_REQUEST),
    (AuthorizationException, status.HTTP_403_FORBIDDEN),
    (ResourceNotFoundException, status.HTTP_404_NOT_FOUND),
    (StaleTicketStateException, status.HTTP_409_CONFLICT),
    (TicketAlreadyResolvedException, status.HTTP_409_CONFLICT),
    (DocumentStorageException, status.HTTP_502_BAD_GATEWAY),
)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    Correlation IDs link the request log lines with the ticket
    operations performed on behalf of that request.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs all requests and responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", "unknown")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        logger.info(
            "Request completed",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int((time.perf_counter() - start_time) * 1000)
            }
        )
        return response


def status_code_for(exc: ApplicationException) -> int:
    """HTTP status code an application exception maps to."""
    for exc_type, code in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Translate application exceptions into JSON error responses."""
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    code = status_code_for(exc)

    log = logger.error if code >= 500 else logger.info
    log(
        "Request rejected",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "error_message": exc.message,
            "status_code": code
        }
    )

    return JSONResponse(
        status_code=code,
        content={
            "detail": exc.message,
            "error_type": type(exc).__name__,
            "correlation_id": correlation_id,
        }
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
        }
    )

    is_dev = getattr(getattr(request.app.state, "settings", None), "environment", None) == "development"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if is_dev else None
        }
    )
