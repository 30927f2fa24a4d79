"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware: injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware: catches domain exceptions -> structured JSON errors
    3. CORSMiddleware: lets the marketplace front end call the API
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from escrow_settlement.domain.exceptions import (
    AlreadyPaidError,
    DuplicateSignatureError,
    GatewayUnavailableError,
    InsufficientBalanceError,
    InvalidPayoutAmountError,
    InvalidSplitPolicyError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentInFlightError,
    SettlementError,
    TransactionConflictError,
    WebhookUnauthorizedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# Most specific first; the first matching class wins.
STATUS_BY_ERROR: tuple[tuple[type[SettlementError], int], ...] = (
    (NotFoundError, 404),
    (WebhookUnauthorizedError, 401),
    (InvalidStateTransitionError, 409),
    (DuplicateSignatureError, 409),
    (AlreadyPaidError, 409),
    (PaymentInFlightError, 409),
    (InsufficientBalanceError, 422),
    (InvalidPayoutAmountError, 422),
    (InvalidSplitPolicyError, 422),
    (GatewayUnavailableError, 503),
    (TransactionConflictError, 503),
)


def status_for(exc: SettlementError) -> int:
    for error_cls, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 400


def error_response(exc: SettlementError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"error": exc.code, "message": exc.message, "retryable": exc.retryable},
    )


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
        except InvalidStateTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted,
                path=request.url.path,
            )
            return error_response(exc)
        except WebhookUnauthorizedError as exc:
            logger.warning("webhook.unauthorized", error=exc.message)
            return error_response(exc)
        except SettlementError as exc:
            log = logger.error if exc.retryable else logger.warning
            log("domain.error", error=exc.message, code=exc.code, path=request.url.path)
            return error_response(exc)
        except (IntegrityError, OperationalError) as exc:
            logger.error("database.conflict", error=str(exc.orig), path=request.url.path)
            return error_response(TransactionConflictError())
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "retryable": False,
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters: middleware is applied bottom-up, so the last added
    middleware runs first.
    """
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
