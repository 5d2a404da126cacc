"""Fidelity bridge: FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from fidelity import __version__
from fidelity.bridge.notifier import Notifier
from fidelity.bridge.router import InteractionRouter
from fidelity.bridge.session import DiscordSession
from fidelity.bridge.updater import MessageUpdater
from fidelity.config import get_config
from fidelity.db.engine import Database
from fidelity.logging import setup_logging
from fidelity.shop.orders import OrderService
from fidelity.shop.receipts import ReceiptService

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)

    logger.info("fidelity.starting", version=__version__, discord_configured=config.discord.configured)

    db = Database(
        config.data_dir,
        journal_mode=config.db_journal_mode,
        busy_timeout_ms=config.db_busy_timeout_ms,
    )
    await db.initialize()

    session = DiscordSession(config.discord)
    updater = MessageUpdater(session)
    notifier = Notifier(session=session, db=db, config=config.discord)
    interaction_router = InteractionRouter(db=db, notifier=notifier, updater=updater)

    # Gateway clicks go straight to the router; the HTTP relay shares it
    session.client.interaction_handler = interaction_router.handle

    if config.discord.configured:
        try:
            await session.connect()
        except Exception as exc:
            logger.error("discord.startup_connect_failed", error=str(exc))
    else:
        logger.warning("discord.not_configured")

    app.state.config = config
    app.state.db = db
    app.state.discord_session = session
    app.state.updater = updater
    app.state.notifier = notifier
    app.state.interaction_router = interaction_router
    app.state.order_service = OrderService(db=db, notifier=notifier, updater=updater)
    app.state.receipt_service = ReceiptService(db=db, notifier=notifier)

    logger.info("fidelity.ready", discord_state=session.state.value)

    yield

    logger.info("fidelity.shutting_down")
    await session.stop()
    await db.close()
    logger.info("fidelity.stopped")


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="Fidelity Bridge",
        version=__version__,
        description="Loyalty shop backend with Discord-based staff approvals.",
        lifespan=lifespan,
    )

    from fidelity.api.routes.health import router as health_router
    from fidelity.api.routes.interactions import router as interactions_router
    from fidelity.api.routes.shop import router as shop_router

    app.include_router(health_router, tags=["health"])
    app.include_router(interactions_router, tags=["discord"])
    app.include_router(shop_router, tags=["shop"])

    return app


app = create_app()


def main() -> None:
    """Run the server directly."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)
    uvicorn.run(
        "fidelity.main:app",
        host=config.host,
        port=config.port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
