"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nullroute import __version__
from nullroute.chain.solana import SolanaClient
from nullroute.config import get_settings
from nullroute.errors import (
    ClientError,
    ConfigurationError,
    ExchangeTimeoutError,
    IntegrityError,
    NullrouteError,
    PersistenceError,
    TransientError,
    ValidationError,
)
from nullroute.exchange.base import ExchangeProvider
from nullroute.exchange.factory import create_exchange_client
from nullroute.governor import RequestGovernor
from nullroute.ledger.database import close_db, init_db
from nullroute.ledger.routing_map import RoutingMap
from nullroute.services.transfer_service import TransferService

logger = logging.getLogger(__name__)

# Error kind -> HTTP status
ERROR_STATUS_CODES = {
    ValidationError: 400,
    ClientError: 502,
    IntegrityError: 502,
    TransientError: 503,
    ConfigurationError: 503,
    ExchangeTimeoutError: 504,
    PersistenceError: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    yield
    # Shutdown
    await close_db()


async def handle_nullroute_error(request: Request, exc: NullrouteError) -> JSONResponse:
    """Turn application errors into a readable message with a matching status."""
    status_code = 500
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = code
            break

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


def create_app(
    exchange_client: Optional[ExchangeProvider] = None,
    solana: Optional[SolanaClient] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    One RequestGovernor is created per application and shared by every
    request, so all outbound exchange calls are paced together.
    """
    settings = get_settings()

    app = FastAPI(
        title="Nullroute API",
        description="Routed SOL transfers through an exchange service",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    governor = RequestGovernor(
        exchange_client or create_exchange_client(settings),
        requests_per_second=settings.governor_requests_per_second,
    )
    app.state.governor = governor
    app.state.solana = solana or SolanaClient(settings.solana_rpc_url)
    app.state.transfer_service = TransferService(
        governor=governor,
        routing_map=RoutingMap(),
        solana=app.state.solana,
        poll_interval=settings.status_poll_interval_seconds,
        poll_max_attempts=settings.status_poll_max_attempts,
    )

    app.add_exception_handler(NullrouteError, handle_nullroute_error)

    # Register routes
    from nullroute.api.routes import health, queue, transactions, wallets

    app.include_router(health.router, tags=["Health"])
    app.include_router(wallets.router, prefix="/api/v1")
    app.include_router(transactions.router, prefix="/api/v1")
    app.include_router(queue.router, prefix="/api/v1")

    return app
