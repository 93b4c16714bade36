"""
Routes untuk trigger crawl (ad hoc dan RagUrlConfig)
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from knowledge_base.api.dependencies import get_identity, get_ingestion_service
from knowledge_base.api.models import AdHocCrawlRequest, ApiResponse, UrlConfigCrawlRequest
from knowledge_base.pipeline import CrawlResponse, IngestionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["crawl"])


def crawl_json_response(result: CrawlResponse) -> JSONResponse:
    body = ApiResponse(data=result.to_dict(), message=result.message)
    headers = result.rate_limit.headers() if result.rate_limit else None
    return JSONResponse(status_code=200, content=body.model_dump(), headers=headers)


@router.post("/api/v1/crawl")
async def crawl_url(request: AdHocCrawlRequest,
                    identity: str = Depends(get_identity),
                    service: IngestionService = Depends(get_ingestion_service)):
    """Crawl and index an arbitrary URL"""
    logger.info(f"Ad hoc crawl of {request.url} requested by {identity}")
    result = await service.crawl_ad_hoc(
        request.url,
        request.crawl_config,
        identity=identity,
        embedding_provider=request.embedding_provider,
        namespace=request.namespace,
    )
    return crawl_json_response(result)


@router.post("/api/v1/knowledge-base/crawl")
async def crawl_url_config(request: UrlConfigCrawlRequest,
                           identity: str = Depends(get_identity),
                           service: IngestionService = Depends(get_ingestion_service)):
    """Crawl a configured knowledge base URL"""
    logger.info(f"Crawl of URL config {request.id} requested by {identity}")
    result = await service.crawl_url_config(
        request.id, identity=identity, embedding_provider=request.embedding_provider,
    )
    return crawl_json_response(result)
