from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from site_analytics.core.values import Value, to_props


class EventType(str, Enum):
    PAGEVIEW = "pageview"
    CUSTOM_EVENT = "custom_event"
    OUTBOUND = "outbound"
    ERROR = "error"


@dataclass(frozen=True)
class Event:
    user_id: str
    session_id: str
    timestamp: datetime
    type: str
    pathname: Optional[str] = None
    querystring: Optional[str] = None
    event_name: Optional[str] = None
    props: Mapping[str, Value] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Event":
        """Build an event from a store row; ``props`` may be a dict of raw JSON values."""
        return cls(
            user_id=row.get("user_id") or "",
            session_id=row.get("session_id") or "",
            timestamp=row["timestamp"],
            type=row.get("type") or "",
            pathname=row.get("pathname"),
            querystring=row.get("querystring"),
            event_name=row.get("event_name"),
            props=to_props(row.get("props")),
        )

    def prop(self, key: str) -> Optional[Value]:
        return self.props.get(key)
