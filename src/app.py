"""Order lifecycle and payment reconciliation FastAPI application.

Thin HTTP surface over the reconciliation engine: gateway webhooks plus
the handful of operations a buyer or support agent triggers by hand.

Usage:
    uvicorn app:app --host 0.0.0.0 --port 8000
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from protean.exceptions import (
    ExpectedVersionError,
    InvalidOperationError,
    ObjectNotFoundError,
    ProteanException,
    ValidationError,
)

from bootstrap import Container, build_container
from identity.port import AuthError
from payments.api import payment_router
from payments.errors import (
    GatewayRejected,
    GatewayTimeout,
    GatewayUnavailable,
    PaymentError,
    SignatureInvalid,
)
from shared.domain import domain
from shared.logging import add_context, clear_context, configure_logging

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
# Most specific class first
_STATUS_FOR_ERROR: list[tuple[type[Exception], int]] = [
    (InvalidOperationError, 409),
    (ValidationError, 422),
    (ObjectNotFoundError, 404),
    (ExpectedVersionError, 409),
    (SignatureInvalid, 400),
    (GatewayTimeout, 504),
    (GatewayUnavailable, 503),
    (GatewayRejected, 422),
]


def _status_for(exc: Exception) -> int:
    for error_class, status_code in _STATUS_FOR_ERROR:
        if isinstance(exc, error_class):
            return status_code
    return 500


def _error_body(exc: Exception) -> dict:
    if isinstance(exc, PaymentError):
        return exc.to_dict()
    code = {
        InvalidOperationError: "invalid_operation",
        ValidationError: "validation_error",
        ObjectNotFoundError: "not_found",
        ExpectedVersionError: "concurrency_conflict",
    }.get(type(exc), "domain_error")
    return {"code": code, "messages": exc.messages}


async def _domain_error_handler(request: Request, exc: ProteanException | PaymentError) -> JSONResponse:
    status_code = _status_for(exc)
    body = _error_body(exc)
    log = logger.warning if status_code < 500 else logger.error
    log("Request failed", path=request.url.path, status_code=status_code, error=body)
    return JSONResponse(status_code=status_code, content={"error": body})


async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    logger.info("Request not authorised", path=request.url.path, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(container: Container | None = None) -> FastAPI:
    """Build the app. Without a container, one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.container is None
        if owned:
            configure_logging()
            app.state.container = build_container()
        app.state.container.dispatcher.start()
        try:
            yield
        finally:
            if owned:
                app.state.container.close()
            else:
                app.state.container.dispatcher.stop()

    app = FastAPI(
        title="Order Reconciliation API",
        description="Order lifecycle and payment reconciliation engine",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        """Push the domain context and bind the request path to every log line."""
        clear_context()
        add_context(path=request.url.path, method=request.method)
        try:
            with domain.domain_context():
                return await call_next(request)
        finally:
            clear_context()

    app.add_exception_handler(ProteanException, _domain_error_handler)
    app.add_exception_handler(PaymentError, _domain_error_handler)
    app.add_exception_handler(AuthError, _auth_error_handler)

    app.include_router(payment_router)

    @app.get("/health")
    async def health(request: Request):
        current = request.app.state.container
        return JSONResponse(
            content={
                "status": "ok",
                "notifications": current.dispatcher.stats() if current else None,
            }
        )

    return app


app = create_app()
