"""
FastAPI application factory dan configuration
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from knowledge_base.api.dependencies import AppState
from knowledge_base.api.exceptions import register_exception_handlers
from knowledge_base.api.routes import crawl, health, rate_limit
from knowledge_base.config import Settings
from knowledge_base.config import settings as default_settings
from knowledge_base.logger import Logger
from knowledge_base.pipeline import IngestionService
from knowledge_base.ratelimit import RateLimiterService, RateLimitSettings, StaticDirectory
from knowledge_base.state import CrawlStateStore, create_repository

logger = logging.getLogger(__name__)


def build_app_state(settings: Settings,
                    rate_limiter: Optional[RateLimiterService] = None,
                    state_store: Optional[CrawlStateStore] = None,
                    ingestion_service: Optional[IngestionService] = None) -> AppState:
    """Create the components that were not injected"""
    app_state = AppState(settings)

    if rate_limiter is None:
        limit_settings = RateLimitSettings.from_env()
        rate_limiter = RateLimiterService(
            limit_settings,
            directory=StaticDirectory.from_raw(limit_settings.identity_directory_raw),
        )
    if state_store is None:
        state_store = CrawlStateStore(create_repository(settings.database_url))
    if ingestion_service is None:
        ingestion_service = IngestionService(settings, state_store, rate_limiter)

    app_state.rate_limiter = rate_limiter
    app_state.state_store = state_store
    app_state.ingestion_service = ingestion_service
    return app_state


def create_app(settings: Optional[Settings] = None,
               rate_limiter: Optional[RateLimiterService] = None,
               state_store: Optional[CrawlStateStore] = None,
               ingestion_service: Optional[IngestionService] = None) -> FastAPI:
    """Factory function untuk membuat FastAPI app"""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan event handler untuk startup dan shutdown"""
        Logger.setup_logging(settings.log_level)
        logger.info("Starting knowledge base ingestion service...")

        app_state = build_app_state(settings, rate_limiter, state_store, ingestion_service)
        app.state.app_state = app_state
        await app_state.rate_limiter.start()

        if not settings.vector_index_name:
            logger.warning("VECTOR_INDEX_NAME is not set; crawl requests will be rejected")
        app_state.set_startup_complete(True)
        logger.info("Knowledge base ingestion service ready")

        yield

        logger.info("Shutting down knowledge base ingestion service...")
        app_state.set_startup_complete(False)
        await app_state.rate_limiter.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(crawl.router)
    app.include_router(rate_limit.router)
    app.include_router(health.router)

    return app
