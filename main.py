import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI, Request
from openai import AsyncOpenAI

from dal.session_dal import SessionDAL
from routes.realtime_ws import router as realtime_router
from routes.session_route import router as session_router
from routes.task_route import router as task_router
from services.providers.base import GenerationProvider
from services.providers.openai_provider import OpenAIImageProvider
from services.providers.placeholder_provider import PlaceholderProvider
from services.thumbnail_generator import ThumbnailGenerator
from services.tracker.notification_channel import NotificationChannel
from services.tracker.session_store import SessionStore
from services.tracker.task_dispatcher import TaskDispatcher
from utils.config import TrackerConfig
from utils.database_init import AsyncDatabaseInitializer

LOGGER = logging.getLogger(__name__)
PURGE_INTERVAL_SECONDS = 60.0


def build_provider(config: TrackerConfig) -> GenerationProvider:
    """Select the generation provider named by the configuration."""
    if config.image_provider == "openai":
        if not config.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY environment variable is not set")
        return OpenAIImageProvider(AsyncOpenAI(api_key=config.openai_api_key), model=config.openai_image_model)
    return PlaceholderProvider()


async def _purge_loop(store: SessionStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await store.purge_expired()
        except Exception:
            LOGGER.exception("Session purge failed")


def create_app(config: Optional[TrackerConfig] = None, provider: Optional[GenerationProvider] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    `config` defaults to `TrackerConfig.from_env()`; `provider` defaults to the
    one selected by the configuration.
    """
    config = config or TrackerConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Build the session store, notification channel and task dispatcher
        and attach them to `app.state`.
        """
        repository = None
        if config.database_dir:
            db_initializer = AsyncDatabaseInitializer(config.database_dir)
            await db_initializer.ensure_database()
            repository = SessionDAL(db_initializer)

        store = SessionStore(
            repository,
            history_limit=config.history_limit,
            session_ttl=config.session_ttl_seconds,
        )
        channel = NotificationChannel()
        resolved_provider = provider or build_provider(config)
        dispatcher = TaskDispatcher(
            store,
            resolved_provider,
            channel,
            timeout=config.task_timeout_seconds,
            max_concurrency=config.max_concurrent_tasks,
        )

        app.state.config = config
        app.state.session_store = store
        app.state.notification_channel = channel
        app.state.dispatcher = dispatcher
        app.state.thumbnail_generator = ThumbnailGenerator()
        LOGGER.info("Tracker started with provider %s", resolved_provider.name)

        purger = asyncio.create_task(_purge_loop(store, PURGE_INTERVAL_SECONDS))
        try:
            yield
        finally:
            purger.cancel()
            with suppress(asyncio.CancelledError):
                await purger
            await dispatcher.shutdown()

    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check reporting the active provider.
        """
        dispatcher = getattr(request.app.state, "dispatcher", None)
        return {
            "ok": dispatcher is not None,
            "provider": dispatcher.provider.name if dispatcher is not None else None,
            "persistent": bool(config.database_dir),
        }

    # Register application routers
    app.include_router(session_router)
    app.include_router(task_router)
    app.include_router(realtime_router)

    return app


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


_config = TrackerConfig.from_env()
configure_logging(_config.log_level)
app = create_app(_config)
