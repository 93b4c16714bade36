"""
API routes module

Module ini berisi semua route handlers untuk API endpoints.
"""

from . import crawl, health, rate_limit

# Import routers untuk mudah diakses
from .crawl import router as crawl_router
from .health import router as health_router
from .rate_limit import router as rate_limit_router

__all__ = [
    # Modules
    'crawl',
    'health',
    'rate_limit',

    # Routers
    'crawl_router',
    'health_router',
    'rate_limit_router',
]
