"""
Routes untuk health check
"""
from fastapi import APIRouter, Depends

from knowledge_base.api.dependencies import AppState, validate_startup_complete
from knowledge_base.api.models import HealthResponse
from knowledge_base.state import InMemoryRagUrlRepository

router = APIRouter(tags=["health"])


@router.get("/api/v1/health", response_model=HealthResponse)
async def health_check(app_state: AppState = Depends(validate_startup_complete)):
    settings = app_state.settings
    limiter = app_state.rate_limiter
    repository = app_state.state_store.repository
    vector_index_configured = bool(settings.vector_index_name and settings.vector_store_connection)

    warnings = list(limiter.settings.warnings)
    if not vector_index_configured:
        warnings.append("Vector index is not configured; crawls will fail with CONFIGURATION_ERROR")

    return HealthResponse(
        status="healthy" if vector_index_configured else "degraded",
        version=settings.api_version,
        rate_limit_backend=limiter.mode.value,
        vector_index_configured=vector_index_configured,
        repository="memory" if isinstance(repository, InMemoryRagUrlRepository) else "postgres",
        warnings=warnings,
    )
