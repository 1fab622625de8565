# harvester/main.py
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker

from .config import Settings, configure_logging
from .controllers.ingestion_controller import IngestionController
from .controllers.polling_controller import PollingManager
from .database import create_session_factory, init_db
from .repository import TelegramRepository
from .routers import auth_router, message_router, polling_router
from .services.telegram_service import TelegramService

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    session_factory: sessionmaker
    repository: TelegramRepository
    telegram_service: TelegramService
    ingestion: IngestionController
    poller: PollingManager


def build_container(settings: Settings) -> Container:
    session_factory = create_session_factory(settings.database_url)
    repository = TelegramRepository(session_factory)
    telegram_service = TelegramService(settings)
    ingestion = IngestionController(telegram_service, repository, page_size=settings.fetch_page_size)
    poller = PollingManager.from_settings(settings, telegram_service, ingestion)
    return Container(settings, session_factory, repository, telegram_service, ingestion, poller)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container: Container = app.state.container
    init_db(container.session_factory)
    logger.info("Database tables verified.")

    # Login may wait on a code from /auth/code; keep serving meanwhile
    connect_task = asyncio.create_task(container.telegram_service.connect())
    container.poller.start()
    yield

    container.poller.stop()
    await container.poller.wait_stopped(timeout=10)
    if not connect_task.done():
        connect_task.cancel()
    await container.telegram_service.disconnect()


def create_app(container: Optional[Container] = None) -> FastAPI:
    if container is None:
        settings = Settings()
        configure_logging(settings.log_level)
        container = build_container(settings)

    app = FastAPI(
        title="Telegram Channel Harvester",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.container = container

    app.include_router(auth_router.router, tags=["Auth"])
    app.include_router(polling_router.router, tags=["Polling"])
    app.include_router(message_router.router, tags=["Messages"])

    @app.get("/")
    def read_root():
        return {"message": "Harvester is running. See /polling/status and /messages."}

    return app
