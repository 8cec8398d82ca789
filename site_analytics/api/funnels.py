from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
import structlog

from site_analytics.api.deps import get_api_key, get_funnel_service
from site_analytics.api.errors import to_http_error
from site_analytics.errors import AnalyticsError, EvaluationError
from site_analytics.models.funnels import FunnelRequest, FunnelResponse
from site_analytics.services.funnels import FunnelService

router = APIRouter()
logger = structlog.get_logger()

FAILURE = "Failed to execute funnel analysis"


@router.post("/sites/{site_id}/funnel", response_model=FunnelResponse)
async def analyze_funnel(
        site_id: int,
        body: FunnelRequest,
        api_key: Optional[str] = Depends(get_api_key),
        service: FunnelService = Depends(get_funnel_service)
):
    try:
        data = await service.analyze(site_id, body, api_key)
        return FunnelResponse(data=data)

    except AnalyticsError as e:
        if isinstance(e, EvaluationError):
            logger.error("funnel_query_failed", site_id=site_id, error=str(e))
        raise to_http_error(e, FAILURE)

    except Exception as e:
        logger.error("funnel_query_failed", site_id=site_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=FAILURE)
