"""
Routes untuk status rate limiting
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from knowledge_base.api.dependencies import get_identity, get_rate_limiter
from knowledge_base.api.models import ApiResponse, timestamp
from knowledge_base.ratelimit import RateLimiterService, recommendations

router = APIRouter(tags=["rate-limit"])


@router.get("/api/v1/rate-limit/status")
async def rate_limit_status(identity: str = Depends(get_identity),
                            limiter: RateLimiterService = Depends(get_rate_limiter)):
    """Current rate limiting configuration and the caller's status"""
    info = limiter.info()
    # Separate key so status checks never consume the caller's own budget
    current = await limiter.check(f"status_check_{identity}")

    body = ApiResponse(data={
        "configuration": info,
        "currentStatus": current.to_dict(),
        "recommendations": recommendations(info),
        "healthCheck": {"timestamp": timestamp(), "userId": identity},
    })
    return JSONResponse(content=body.model_dump(), headers=current.headers())
