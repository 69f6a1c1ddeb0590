"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser-based clients

Every error body has the shape {"ok": false, "error": <message>, "code": <code>}.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from secure_swap.domain.exceptions import (
    BackendUnavailableError,
    EscrowError,
    InvalidTransitionError,
    SettlementFailureError,
    SettlementPendingError,
    TradeConflictError,
    TradeNotFoundError,
    UnauthorizedError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# Most specific first; the first isinstance match wins.
STATUS_BY_ERROR: tuple[tuple[type[EscrowError], int], ...] = (
    (ValidationError, 400),
    (UnauthorizedError, 403),
    (TradeNotFoundError, 404),
    (TradeConflictError, 409),
    (InvalidTransitionError, 409),
    (SettlementPendingError, 202),
    (SettlementFailureError, 502),
    (BackendUnavailableError, 503),
)


def error_body(message: str, code: str) -> dict:
    return {"ok": False, "error": message, "code": code}


def status_for(exc: EscrowError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except SettlementPendingError as exc:
            logger.info("settlement.pending_response", trade_id=exc.trade_id)
            return JSONResponse(
                status_code=202,
                content={
                    "ok": False,
                    "pending": True,
                    "txHash": exc.references[-1] if exc.references else None,
                    "references": exc.references,
                    "code": exc.code,
                },
            )
        except EscrowError as exc:
            status_code = status_for(exc)
            if status_code >= 500:
                logger.error("domain.error", error=exc.message, code=exc.code)
            else:
                logger.warning("domain.rejected", error=exc.message, code=exc.code)
            return JSONResponse(
                status_code=status_code,
                content=error_body(exc.message, exc.code),
            )
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content=error_body("An unexpected error occurred", "INTERNAL_ERROR"),
            )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema violations are client errors like any other ValidationError."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid request")
    if location:
        message = f"{location}: {message}"
    logger.warning("request.invalid", error=message)
    return JSONResponse(status_code=400, content=error_body(message, "VALIDATION_ERROR"))


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
