"""FastAPI application entry point — wires everything together.

Usage:
    python -m afripay_bot.main

Starts FastAPI (health check) + Telegram bot (long-polling) concurrently.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI
from telegram import Bot

from afripay_bot.audit.events import start_event_system, stop_event_system, subscribe, unsubscribe
from afripay_bot.audit.subscriber import AUDITED_EVENTS, make_audit_subscriber
from afripay_bot.bot import BotRuntime, build_runtime
from afripay_bot.channels.telegram import TelegramMessenger, create_telegram_app
from afripay_bot.config import settings
from afripay_bot.conversation.dispatcher import Dispatcher

SERVICE_NAME = "afripay-telegram-bot"

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)
# httpx logs every request URL at INFO, bot token included
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting Afripay bot (env=%s)", settings.environment)
    app.state.polling = False

    # 1. Event system
    await start_event_system()
    logger.info("Event system started")

    # 2. Object graph, built around the Telegram bot once it exists
    runtimes: list[BotRuntime] = []

    def dispatcher_factory(bot: Bot) -> Dispatcher:
        runtime = build_runtime(TelegramMessenger(bot))
        runtimes.append(runtime)
        return runtime.dispatcher

    # 3. Telegram bot: a missing token aborts startup
    telegram_app = create_telegram_app(dispatcher_factory)
    runtime = runtimes[0]

    # 4. Audit logging: always active, lifecycle events only
    audit_on_event = make_audit_subscriber(runtime.bot_log)
    subscribe(audit_on_event, AUDITED_EVENTS)
    logger.info("Audit logging subscriber registered")

    await telegram_app.initialize()
    await telegram_app.start()
    await telegram_app.updater.start_polling(drop_pending_updates=True)  # type: ignore[union-attr]
    app.state.polling = True
    logger.info("Telegram bot polling started")

    try:
        yield
    finally:
        # Shutdown in reverse order
        logger.info("Shutting down Afripay bot...")
        app.state.polling = False

        if telegram_app.updater:
            await telegram_app.updater.stop()
        await telegram_app.stop()
        await telegram_app.shutdown()
        logger.info("Telegram bot stopped")

        unsubscribe(audit_on_event)
        await stop_event_system()
        logger.info("Event system stopped")

        await runtime.close()
        logger.info("Backend client closed")

    logger.info("Afripay bot shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Afripay Bot API",
    description="Telegram banking assistant for Afripay",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/healthz")
async def health_check() -> dict[str, object]:
    """Health check endpoint."""
    return {
        "ok": True,
        "service": SERVICE_NAME,
        "polling": bool(getattr(app.state, "polling", False)),
        "environment": settings.environment,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "afripay_bot.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
