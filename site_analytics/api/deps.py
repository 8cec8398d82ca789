from typing import Optional

from fastapi import Depends, Header, Request

from site_analytics.db.clickhouse import ClickHouseEventStore
from site_analytics.db.postgres import GoalRepository, SiteAuthorizer
from site_analytics.services.funnels import FunnelService
from site_analytics.services.goals import GoalService
from site_analytics.services.products import ProductInfoCache


def get_event_store() -> ClickHouseEventStore:
    return ClickHouseEventStore()


def get_authorizer() -> SiteAuthorizer:
    return SiteAuthorizer()


def get_goal_repository() -> GoalRepository:
    return GoalRepository()


def get_product_cache(request: Request) -> ProductInfoCache:
    return request.app.state.product_cache


def get_api_key(x_api_key: Optional[str] = Header(None)) -> Optional[str]:
    return x_api_key


def get_funnel_service(
        store=Depends(get_event_store),
        authorizer=Depends(get_authorizer)
) -> FunnelService:
    return FunnelService(store, authorizer)


def get_goal_service(
        store=Depends(get_event_store),
        repository=Depends(get_goal_repository),
        authorizer=Depends(get_authorizer)
) -> GoalService:
    return GoalService(store, repository, authorizer)
