"""
Pydantic models untuk request dan response API
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class AdHocCrawlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    # Validated by validate_crawl_config so messages match the admin path
    crawl_config: Dict[str, Any] = Field(alias="crawlConfig")
    embedding_provider: Optional[str] = Field(default=None, alias="embeddingProvider")
    namespace: Optional[str] = None


class UrlConfigCrawlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: StrictInt
    embedding_provider: Optional[str] = Field(default=None, alias="embeddingProvider")


class ApiResponse(BaseModel):
    success: bool = True
    data: Optional[Any] = None
    message: Optional[str] = None
    timestamp: str = Field(default_factory=timestamp)


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str
    timestamp: str = Field(default_factory=timestamp)


class HealthResponse(BaseModel):
    status: str
    version: str
    rate_limit_backend: str
    vector_index_configured: bool
    repository: str
    warnings: List[str] = []
