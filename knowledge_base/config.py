"""
Configuration management untuk knowledge base service
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


def env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Application settings dari environment variables"""

    # Server configuration
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False
    log_level: str = "INFO"
    environment: str = "development"

    # Vector index
    vector_index_name: Optional[str] = None
    vector_store_connection: Optional[str] = None

    # Config rows (RagUrlConfig)
    database_url: Optional[str] = None

    # Embeddings
    openai_api_key: Optional[str] = None
    openai_embedding_model: str = "text-embedding-3-small"
    google_api_key: Optional[str] = None
    google_embedding_model: str = "models/embedding-001"
    default_embedding_provider: str = "openai"

    # Chunking and upsert
    splitting_method: str = "recursive"
    chunk_size: int = 1000
    chunk_overlap: int = 200
    upsert_batch_size: int = 10
    max_concurrent_upserts: int = 3

    # API configuration
    api_title: str = "Knowledge Base Ingestion API"
    api_description: str = "Crawl, chunk, embed and index web content into namespaced vector collections"
    api_version: str = "1.0.0"
    cors_origins: list = field(default_factory=lambda: ["*"])

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=env_int("PORT", 8000),
            reload=env_bool("RELOAD", False),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            environment=os.getenv("ENVIRONMENT", "development"),
            vector_index_name=os.getenv("VECTOR_INDEX_NAME") or None,
            vector_store_connection=os.getenv("VECTOR_STORE_CONNECTION") or None,
            database_url=os.getenv("DATABASE_URL") or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            google_api_key=os.getenv("GOOGLE_API_KEY") or None,
            google_embedding_model=os.getenv("GOOGLE_EMBEDDING_MODEL", "models/embedding-001"),
            default_embedding_provider=os.getenv("DEFAULT_EMBEDDING_PROVIDER", "openai").lower(),
            splitting_method=os.getenv("SPLITTING_METHOD", "recursive").lower(),
            chunk_size=env_int("CHUNK_SIZE", 1000),
            chunk_overlap=env_int("CHUNK_OVERLAP", 200),
            upsert_batch_size=env_int("UPSERT_BATCH_SIZE", 10),
            max_concurrent_upserts=env_int("MAX_CONCURRENT_UPSERTS", 3),
        )

    def provider_api_keys(self) -> Dict[str, Optional[str]]:
        return {"openai": self.openai_api_key, "google": self.google_api_key}


# Global settings instance
settings = Settings.from_env()
