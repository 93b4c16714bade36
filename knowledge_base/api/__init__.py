"""
API module untuk knowledge base ingestion service

Module ini berisi FastAPI app factory, models, routes, dependencies
dan exception handlers.
"""

from .app import build_app_state, create_app
from .dependencies import AppState
from .exceptions import (
    ApplicationStartupIncomplete,
    MissingIdentityError,
    register_exception_handlers,
)
from .models import (
    AdHocCrawlRequest,
    ApiResponse,
    ErrorResponse,
    HealthResponse,
    UrlConfigCrawlRequest,
)

__all__ = [
    # App factory
    'create_app',
    'build_app_state',
    'AppState',

    # Models
    'AdHocCrawlRequest',
    'UrlConfigCrawlRequest',
    'ApiResponse',
    'ErrorResponse',
    'HealthResponse',

    # Exceptions
    'ApplicationStartupIncomplete',
    'MissingIdentityError',
    'register_exception_handlers',
]
