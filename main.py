# main.py
# Role: Application entry point for the finance ledger.
#       Builds the FastAPI app, wires the store and identity provider,
#       creates database tables on startup, and registers all route modules.

"""
Main FastAPI app for the personal finance ledger.

Here we only:
- configure logging
- create the FastAPI app (store + identity provider on app.state)
- create DB tables on startup
- map ledger errors to JSON responses
- include route modules
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings, load_settings
from db import build_engine
from app.auth import IdentityProvider
from app.errors import LedgerError, Unauthenticated, Unavailable
from app.routes_root import router as root_router
from app.routes_accounts import router as accounts_router
from app.routes_transactions import router as transactions_router
from app.routes_loans import router as loans_router
from app.routes_dashboard import router as dashboard_router
from app.store import Store

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


# -------------------------------------------------------------------
# Error mapping
# -------------------------------------------------------------------

async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    headers = {}
    if isinstance(exc, Unauthenticated):
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, Unavailable):
        headers["Retry-After"] = "1"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "retriable": exc.retriable},
        headers=headers,
    )


# -------------------------------------------------------------------
# App factory
# -------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    identity: Optional[IdentityProvider] = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    if store is None:
        engine = build_engine(settings.database_url, echo=settings.sql_echo)
        store = Store(engine, timeout=settings.store_timeout_seconds)

    if identity is None:
        identity = IdentityProvider(
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
            audience=settings.jwt_audience,
            expire_minutes=settings.access_token_expire_minutes,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create database tables (only if they don't exist yet)
        await store.create_schema()
        logger.info("[startup] database schema ready")
        yield
        await store.dispose()

    # FastAPI application instance
    app = FastAPI(title="Finance Ledger", lifespan=lifespan)
    app.state.store = store
    app.state.identity = identity

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)

    # -------------------------------------------------------------------
    # Include routers
    # -------------------------------------------------------------------

    # Root / health
    app.include_router(root_router)

    # Accounts (+ reconciliation read)
    app.include_router(accounts_router)

    # Transactions (balance-maintaining writes)
    app.include_router(transactions_router)

    # Loans
    app.include_router(loans_router)

    # Dashboard (monthly overview)
    app.include_router(dashboard_router)

    return app


# FastAPI application instance (uvicorn main:app)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
