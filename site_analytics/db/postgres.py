import hashlib
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from site_analytics.config import settings
from site_analytics.errors import AuthorizationError
from site_analytics.models.goals import GoalConfig, GoalDefinition

logger = structlog.get_logger()

engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


class Site(Base):
    __tablename__ = "sites"

    site_id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    public = Column(Boolean, nullable=False, default=False)


class SiteAccess(Base):
    __tablename__ = "site_access"

    api_key_hash = Column(String, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.site_id", ondelete="CASCADE"), primary_key=True)


class Goal(Base):
    __tablename__ = "goals"

    goal_id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.site_id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=True)
    goal_type = Column(String, nullable=False)
    config = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode()).hexdigest()


GOAL_SORT_COLUMNS = {
    "goalId": Goal.goal_id,
    "name": Goal.name,
    "goalType": Goal.goal_type,
    "createdAt": Goal.created_at,
}


def to_goal_definition(goal: Goal) -> GoalDefinition:
    return GoalDefinition(
        id=goal.goal_id,
        name=goal.name,
        kind=goal.goal_type,
        config=GoalConfig.model_validate(goal.config or {}),
        created_at=goal.created_at,
    )


class GoalRepository:
    """Reads goals persisted by the dashboard; one page at a time."""

    def __init__(self, session_maker=async_session_maker):
        self._session_maker = session_maker

    async def list_goals(
        self,
        site_id: int,
        *,
        page: int = 1,
        page_size: int = 1_000_000,
        sort: str = "createdAt",
        order: str = "desc",
    ) -> Tuple[List[GoalDefinition], int]:
        column = GOAL_SORT_COLUMNS.get(sort, Goal.created_at)
        direction = asc if order == "asc" else desc

        async with self._session_maker() as session:
            total = await session.scalar(select(func.count()).select_from(Goal).where(Goal.site_id == site_id))
            result = await session.execute(
                select(Goal)
                .where(Goal.site_id == site_id)
                .order_by(direction(column))
                .limit(page_size)
                .offset((page - 1) * page_size)
            )
            goals = [to_goal_definition(goal) for goal in result.scalars()]

        return goals, int(total or 0)


class SiteAuthorizer:
    """A site is readable when it is public or the API key was granted access to it."""

    def __init__(self, session_maker=async_session_maker):
        self._session_maker = session_maker

    async def can_read(self, site_id: int, api_key: Optional[str]) -> bool:
        async with self._session_maker() as session:
            public = await session.scalar(select(Site.public).where(Site.site_id == site_id))
            if public:
                return True
            if not api_key:
                return False
            granted = await session.scalar(
                select(func.count())
                .select_from(SiteAccess)
                .where(SiteAccess.site_id == site_id, SiteAccess.api_key_hash == hash_api_key(api_key))
            )
        return bool(granted)

    async def ensure_can_read(self, site_id: int, api_key: Optional[str]):
        if not await self.can_read(site_id, api_key):
            logger.warning("site_access_denied", site_id=site_id)
            raise AuthorizationError("Forbidden")
