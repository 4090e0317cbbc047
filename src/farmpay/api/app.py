"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from farmpay import __version__
from farmpay.api.routes import (
    health_router,
    invoices_router,
    payroll_router,
    transactions_router,
    wallets_router,
    webhooks_router,
)
from farmpay.config import get_settings
from farmpay.database import create_tables, dispose_db, init_db
from farmpay.payments.errors import (
    InsufficientFundsError,
    InvalidTransitionError,
    InvariantViolationError,
    NotFoundError,
    PaymentError,
    ValidationError,
)
from farmpay.payments.facade import FarmPay
from farmpay.payments.providers.stub import MobileMoneyStubGateway
from farmpay.payments.services.transaction_engine import EngineConfig
from farmpay.payments.store.sql import SqlAlchemyPaymentStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Builds a database-backed FarmPay unless one was handed to create_app(),
    then expires transactions a previous process left in processing.
    """
    owned = getattr(app.state, "farmpay", None) is None
    if owned:
        settings = get_settings()
        engine, session_factory = init_db(settings.database_url)
        await create_tables(engine)
        app.state.db_engine = engine
        app.state.farmpay = FarmPay(
            SqlAlchemyPaymentStore(session_factory),
            MobileMoneyStubGateway(),
            engine_config=EngineConfig(authorization_timeout=settings.authorization_timeout),
            payroll_concurrency=settings.payroll_max_concurrency,
            platform_user_id=settings.platform_fee_user_id,
        )
        logger.info("Payment core started on %s", engine.url.render_as_string(hide_password=True))
    await app.state.farmpay.recover()
    yield
    await app.state.farmpay.aclose()
    if owned:
        await dispose_db()
        app.state.farmpay = None
        app.state.db_engine = None


def _error(status_code: int, exc: Exception, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": code})


def create_app(farmpay: FarmPay | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="FarmPay API",
        description="Wallets, mobile-money transactions, invoices and payroll",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.farmpay = farmpay
    app.state.db_engine = None

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"errors": exc.errors, "code": "VALIDATION_ERROR"},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, exc, "NOT_FOUND")

    @app.exception_handler(InvalidTransitionError)
    async def transition_error_handler(
        request: Request, exc: InvalidTransitionError
    ) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, "INVALID_TRANSITION")

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds_handler(
        request: Request, exc: InsufficientFundsError
    ) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc, "INSUFFICIENT_FUNDS")

    @app.exception_handler(InvariantViolationError)
    async def invariant_error_handler(
        request: Request, exc: InvariantViolationError
    ) -> JSONResponse:
        logger.error("Invariant violation on %s %s: %s", request.method, request.url.path, exc)
        return _error(status.HTTP_409_CONFLICT, exc, "INVARIANT_VIOLATION")

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, exc, "PAYMENT_ERROR")

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(wallets_router, prefix="/api/v1")
    app.include_router(transactions_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")
    app.include_router(invoices_router, prefix="/api/v1")
    app.include_router(payroll_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
