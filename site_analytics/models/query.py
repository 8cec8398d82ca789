from datetime import date
from enum import Enum
from typing import List, Optional, Union

from pydantic import Field, model_validator

from site_analytics.models.base import CamelModel


class FilterType(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"


class Filter(CamelModel):
    parameter: str
    type: FilterType = FilterType.EQUALS
    value: List[Union[str, int, float]] = Field(default_factory=list)


class TimeWindowParams(CamelModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    time_zone: str = "UTC"
    past_minutes_start: Optional[int] = Field(None, ge=0)
    past_minutes_end: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.past_minutes_start is not None:
            if self.past_minutes_end is not None and self.past_minutes_end > self.past_minutes_start:
                raise ValueError("pastMinutesEnd must not exceed pastMinutesStart")
            return self
        if self.start_date is None or self.end_date is None:
            raise ValueError("startDate and endDate are required without pastMinutesStart")
        if self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self
