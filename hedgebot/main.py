"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from hedgebot.config import settings
from hedgebot.database import create_db_and_tables
from hedgebot.utils.logging import setup_logging
from hedgebot.api import hedges, markets, positions, system

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()

    from hedgebot.engine.scheduler import start_scheduler, stop_scheduler
    from hedgebot.engine.threshold_monitor import init_monitor
    from hedgebot.services.deribit_client import DeribitClient
    from hedgebot.services.position_store import PositionStore

    client = DeribitClient()
    store = PositionStore()

    # Start Telegram bot if configured; otherwise alerts only go to the log
    telegram_bot = None
    if settings.telegram_bot_token:
        from hedgebot.services.telegram_bot import init_bot
        telegram_bot = init_bot(store, client)

    monitor = init_monitor(store, client, notifier=telegram_bot)
    if telegram_bot:
        telegram_bot.monitor = monitor
        await telegram_bot.start()

    app.state.client = client
    app.state.store = store
    app.state.monitor = monitor
    start_scheduler(monitor)

    yield

    if telegram_bot:
        await telegram_bot.stop()
    stop_scheduler()
    await client.close()


app = FastAPI(
    title="Hedge Bot",
    description="Deribit protective-put suggestions and option price alerts",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Store failure on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})


# Mount routers
app.include_router(hedges.router)
app.include_router(markets.router)
app.include_router(positions.router)
app.include_router(system.router)
