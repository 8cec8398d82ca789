from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import AliasChoices, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr

from site_analytics.models.base import CamelModel
from site_analytics.models.query import Filter, TimeWindowParams

PropertyValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]
StepKind = Literal["page", "event"]


class StepRule(CamelModel):
    model_config = ConfigDict(frozen=True)

    kind: StepKind = Field(validation_alias=AliasChoices("kind", "type"))
    value: str
    name: Optional[str] = None
    event_property_key: Optional[str] = None
    event_property_value: Optional[PropertyValue] = None

    @property
    def display_name(self) -> str:
        return self.name or self.value


class FunnelRequest(TimeWindowParams):
    steps: List[StepRule] = Field(default_factory=list)
    filters: List[Filter] = Field(default_factory=list)


class Entry(CamelModel):
    label: str
    session_id: str
    user_id: Optional[str] = None
    timestamp: datetime
    kind: str


class LabelCount(CamelModel):
    label: str
    distinct_users: int


class StepDetails(CamelModel):
    kind: StepKind
    top_labels: List[LabelCount] = Field(default_factory=list)
    entries: List[Entry] = Field(default_factory=list)


class StepResult(CamelModel):
    step_number: int
    step_name: str
    visitors: int
    conversion_rate: float
    dropoff_rate: float
    details: Optional[StepDetails] = None


class FunnelResponse(CamelModel):
    data: List[StepResult]
