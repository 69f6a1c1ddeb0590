"""FastAPI application entry point for the SecureSwap escrow service.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, the settlement backend,
       and the trade lifecycle; diagnose the backend.
    2. Running: Serve the REST API + MCP tools on a single Uvicorn process.
    3. Shutdown: Close the settlement client, database and Redis connections.

The MCP server is mounted at /mcp so agent clients can discover tools
alongside the REST API.

Run with:
    uvicorn secure_swap.main:app --reload --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from secure_swap.config import get_settings
from secure_swap.logging_config import get_logger, setup_logging_from_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from secure_swap.config import Settings
    from secure_swap.domain.settlement_protocol import SettlementExecutor


async def diagnose_settlement(executor: SettlementExecutor, settings: Settings) -> bool:
    """Log whether the backend is live and the signer can pay for anything.

    Never raises: a dead backend degrades /health but does not stop startup.
    """
    logger = get_logger(__name__)
    try:
        live = await executor.ping()
    except Exception as exc:
        logger.error("settlement.diagnose_failed", error=str(exc))
        return False
    if not live:
        logger.error(
            "settlement.unreachable",
            backend=settings.settlement_backend,
            escrow=settings.escrow_contract_address or None,
        )
        return False

    try:
        balance = await executor.get_balance(settings.signer_address)
    except Exception as exc:
        logger.warning("settlement.balance_unknown", error=str(exc))
        return True
    if balance == 0:
        logger.warning("settlement.signer_unfunded", signer=settings.signer_address)
    else:
        logger.info("settlement.ready", signer=settings.signer_address, balance=balance)
    return True


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging_from_settings(settings)
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        settlement=settings.settlement_backend,
    )

    # 2. Initialize database
    from secure_swap.infrastructure.database.engine import close_db, init_db

    session_factory = await init_db()

    # 3. Initialize Redis
    from secure_swap.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Settlement backend and trade lifecycle
    from secure_swap.domain.authority import Authority, AuthorityKeyring
    from secure_swap.mcp_server.tools import configure_tools
    from secure_swap.services.trade_lifecycle import TradeLifecycle
    from secure_swap.services.trade_store import TradeStore
    from secure_swap.settlement import SettlementExecutorFactory

    executor = SettlementExecutorFactory.create(settings)
    await diagnose_settlement(executor, settings)

    lifecycle = TradeLifecycle.from_settings(TradeStore(session_factory), executor, settings)
    keyring = AuthorityKeyring(
        Authority(settings.signer_address, label="signer"), settings.api_credentials
    )
    app.state.executor = executor
    app.state.lifecycle = lifecycle
    app.state.keyring = keyring
    configure_tools(lifecycle, keyring, settings.asset_decimals)

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    aclose = getattr(executor, "aclose", None)
    if aclose is not None:
        await aclose()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="SecureSwap Escrow",
        description=(
            "Escrow trade lifecycle between a seller and a buyer, with "
            "arbiter-settled disputes."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from secure_swap.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from secure_swap.api.routes.health import router as health_router
    from secure_swap.api.routes.trades import router as trades_router

    app.include_router(health_router)
    app.include_router(trades_router)

    # --- MCP Server (mounted as sub-application) ---
    from secure_swap.mcp_server.tools import mcp

    mcp_app = mcp.sse_app()
    app.mount("/mcp", mcp_app)

    return app


# The app instance used by Uvicorn
app = create_app()
