"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hedgebot.config import settings
from hedgebot.database import create_db_and_tables
from hedgebot.utils.logging import setup_logging
from hedgebot.api import bot, system


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()

    from hedgebot.engine.runtime import init_runtime
    from hedgebot.engine.scheduler import start_scheduler, stop_scheduler

    runtime = init_runtime(settings)
    runtime.bind_loop()

    # Start Telegram bot if configured
    telegram_bot = None
    if settings.telegram_bot_token:
        from hedgebot.services.telegram_bot import init_bot
        telegram_bot = init_bot()
        telegram_bot.start()

    # Compare persisted trades against exchange positions before trading resumes
    from hedgebot.engine.position_sync import sync_positions_on_startup
    await sync_positions_on_startup(runtime.state, runtime.client, notify=runtime.notify)
    start_scheduler()
    await runtime.resume_if_needed()

    yield

    await runtime.shutdown()
    if telegram_bot:
        telegram_bot.stop()
    stop_scheduler()


app = FastAPI(
    title="Hedge Bot",
    description="Binance futures main/hedge position bot with control API",
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

# Mount routers
app.include_router(bot.router)
app.include_router(system.router)
