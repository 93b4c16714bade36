"""
Rate limiting module untuk knowledge base service

Module ini berisi konfigurasi rate limit, backend (redis, memory,
disabled), admin allowlist dan RateLimiterService.
"""

from .admin import AdminAllowlist, DirectoryService, StaticDirectory, parse_admin_emails
from .backends import (
    DisabledBackend,
    MemoryBackend,
    RateLimitBackend,
    RateLimitRecord,
    RateLimitResult,
    RedisBackend,
    create_backend,
)
from .config import RateLimitMode, RateLimitSettings, resolve_mode
from .service import RateLimiterService, recommendations

__all__ = [
    'RateLimiterService',
    'recommendations',
    'RateLimitSettings',
    'RateLimitMode',
    'resolve_mode',
    'RateLimitResult',
    'RateLimitRecord',
    'RateLimitBackend',
    'RedisBackend',
    'MemoryBackend',
    'DisabledBackend',
    'create_backend',
    'AdminAllowlist',
    'DirectoryService',
    'StaticDirectory',
    'parse_admin_emails',
]
