from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
import structlog

from site_analytics.api.deps import get_api_key, get_goal_service
from site_analytics.api.errors import to_http_error
from site_analytics.errors import AnalyticsError, EvaluationError, ValidationError
from site_analytics.models.goals import GoalsPage
from site_analytics.models.query import Filter, TimeWindowParams
from site_analytics.services.goals import GoalService

router = APIRouter()
logger = structlog.get_logger()

FAILURE = "Failed to fetch goals data"

_filters_adapter = TypeAdapter(List[Filter])


def parse_filters(raw: Optional[str]) -> List[Filter]:
    if not raw:
        return []
    try:
        return _filters_adapter.validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid filters: {e.errors(include_url=False)}") from e


def parse_window(**params) -> TimeWindowParams:
    try:
        return TimeWindowParams(**params)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid time window: {e.errors(include_url=False)}") from e


@router.get("/sites/{site_id}/goals", response_model=GoalsPage)
async def get_goals(
        site_id: int,
        start_date: Optional[str] = Query(None, alias="startDate", pattern=r"^\d{4}-\d{2}-\d{2}$"),
        end_date: Optional[str] = Query(None, alias="endDate", pattern=r"^\d{4}-\d{2}-\d{2}$"),
        time_zone: str = Query("UTC", alias="timeZone"),
        past_minutes_start: Optional[int] = Query(None, alias="pastMinutesStart"),
        past_minutes_end: Optional[int] = Query(None, alias="pastMinutesEnd"),
        filters: Optional[str] = None,
        page: int = 1,
        page_size: int = Query(1_000_000, alias="pageSize"),
        sort: str = "createdAt",
        order: Literal["asc", "desc"] = "desc",
        api_key: Optional[str] = Depends(get_api_key),
        service: GoalService = Depends(get_goal_service)
):
    try:
        window = parse_window(
            start_date=start_date,
            end_date=end_date,
            time_zone=time_zone,
            past_minutes_start=past_minutes_start,
            past_minutes_end=past_minutes_end,
        )
        result = await service.conversions(
            site_id,
            window,
            parse_filters(filters),
            page=page,
            page_size=page_size,
            sort=sort,
            order=order,
            api_key=api_key,
        )
        logger.info("goals_query", site_id=site_id, page=page, count=len(result.data))
        return result

    except AnalyticsError as e:
        if isinstance(e, EvaluationError):
            logger.error("goals_query_failed", site_id=site_id, error=str(e))
        raise to_http_error(e, FAILURE)

    except Exception as e:
        logger.error("goals_query_failed", site_id=site_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=FAILURE)
