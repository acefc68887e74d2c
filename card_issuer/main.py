"""
FastAPI application and entry point.

This module creates and configures the FastAPI application:
  1. Logging — one basicConfig call at import time
  2. Lifespan manager — creates tables, runs the outbox dispatcher,
     cleans up on shutdown
  3. Exception handlers — maps domain errors to HTTP responses
  4. Router registration — cards, customers, consumed events

Running locally:
    uvicorn card_issuer.main:app --reload

The --reload flag watches for file changes and restarts automatically,
which is ideal for development but should not be used in production.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from card_issuer.config import settings
from card_issuer.database import AsyncSessionLocal, Base, engine
from card_issuer.exceptions import register_exception_handlers
from card_issuer.routers import cards, customers, events
from card_issuer.services.outbox_dispatcher import OutboxDispatcher
from card_issuer.services.publishers import build_publisher

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Route every module logger to stderr at the configured level."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
      Creates all database tables if they don't exist, then starts the
      outbox dispatcher as a background task (unless disabled).

    Shutdown:
      Stops the dispatcher (an entry mid-retry stays pending), closes the
      publisher and disposes of the database engine.
    """
    # --- Startup ---
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    publisher = build_publisher(settings)
    dispatcher = OutboxDispatcher(publisher, AsyncSessionLocal)
    app.state.dispatcher = dispatcher
    if settings.OUTBOX_DISPATCHER_ENABLED:
        dispatcher.start()
    else:
        logger.info("Outbox dispatcher disabled; entries will accumulate until enabled")

    yield

    # --- Shutdown ---
    await dispatcher.stop()
    await publisher.aclose()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Card issuance and activation with tokenized card data and an event outbox",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(cards.router, prefix="/cards", tags=["Cards"])
app.include_router(customers.router, prefix="/customers", tags=["Customers"])
app.include_router(events.router, prefix="/events", tags=["Events"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for deployment probes.

    Reports whether the outbox dispatcher is running alongside the version.
    """
    dispatcher = getattr(app.state, "dispatcher", None)
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "outbox_dispatcher": "running" if dispatcher and dispatcher.running else "stopped",
    }
