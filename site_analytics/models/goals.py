from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from site_analytics.models.base import CamelModel
from site_analytics.models.funnels import PropertyValue

GoalKind = Literal["path", "event"]


class GoalConfig(CamelModel):
    path_pattern: Optional[str] = None
    event_name: Optional[str] = None
    event_property_key: Optional[str] = None
    event_property_value: Optional[PropertyValue] = None


class GoalDefinition(CamelModel):
    id: int
    name: Optional[str] = None
    kind: GoalKind
    config: GoalConfig = Field(default_factory=GoalConfig)
    created_at: Optional[datetime] = None


class MatchedEntry(CamelModel):
    session_id: str
    user_id: Optional[str] = None
    matched_label: Optional[str] = None
    entry_page: Optional[str] = None
    exit_page: Optional[str] = None
    matched_at: datetime


class GoalResult(GoalDefinition):
    total_conversions: int = 0
    total_sessions: int = 0
    conversion_rate: float = 0.0
    match_scope: Literal["pathname", "custom_event"]
    path_regex: Optional[str] = None
    matched_pages: Optional[List[str]] = None
    matched_actions: Optional[List[str]] = None
    matched_entries: List[MatchedEntry] = Field(default_factory=list)


class PageMeta(CamelModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class GoalsPage(CamelModel):
    data: List[GoalResult]
    meta: PageMeta
