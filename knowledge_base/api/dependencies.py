"""
FastAPI dependencies untuk app state dan identitas caller
"""
from typing import Optional

from fastapi import Depends, Header, Request

from knowledge_base.api.exceptions import ApplicationStartupIncomplete, MissingIdentityError
from knowledge_base.config import Settings
from knowledge_base.pipeline import IngestionService
from knowledge_base.ratelimit import RateLimiterService
from knowledge_base.state import CrawlStateStore


class AppState:
    """Menyimpan komponen aplikasi yang dibuat saat startup"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.rate_limiter: Optional[RateLimiterService] = None
        self.state_store: Optional[CrawlStateStore] = None
        self.ingestion_service: Optional[IngestionService] = None
        self.app_startup_complete = False

    def set_startup_complete(self, status: bool):
        self.app_startup_complete = status

    def is_startup_complete(self) -> bool:
        return self.app_startup_complete


def get_app_state(request: Request) -> AppState:
    """Dependency untuk mendapatkan app state"""
    return request.app.state.app_state


def validate_startup_complete(app_state: AppState = Depends(get_app_state)) -> AppState:
    """Dependency untuk memvalidasi startup complete"""
    if not app_state.is_startup_complete():
        raise ApplicationStartupIncomplete()
    return app_state


def get_ingestion_service(app_state: AppState = Depends(validate_startup_complete)) -> IngestionService:
    return app_state.ingestion_service


def get_rate_limiter(app_state: AppState = Depends(validate_startup_complete)) -> RateLimiterService:
    return app_state.rate_limiter


def get_identity(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity; authentication happens upstream"""
    if not x_user_id or not x_user_id.strip():
        raise MissingIdentityError()
    return x_user_id.strip()
