"""Time window and dashboard filters, compiled to bound ClickHouse WHERE clauses."""

import re
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from site_analytics.core.sql import SqlParams
from site_analytics.errors import ValidationError
from site_analytics.models.query import Filter, FilterType, TimeWindowParams

FILTER_COLUMNS = {
    "pathname": "pathname",
    "querystring": "querystring",
    "page_title": "page_title",
    "referrer": "referrer",
    "hostname": "hostname",
    "channel": "channel",
    "browser": "browser",
    "operating_system": "operating_system",
    "device_type": "device_type",
    "country": "country",
    "region": "region",
    "city": "city",
    "language": "language",
    "event_name": "event_name",
    "utm_source": "utm_source",
    "utm_medium": "utm_medium",
    "utm_campaign": "utm_campaign",
}

_SESSION_TOKEN = re.compile(r"^#(.+?)#$")


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown time zone: {name}") from e


def _format_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    @classmethod
    def from_params(cls, params: TimeWindowParams, now: Optional[datetime] = None) -> "TimeWindow":
        if params.past_minutes_start is not None:
            now = now or datetime.now(timezone.utc)
            return cls(
                start=now - timedelta(minutes=params.past_minutes_start),
                end=now - timedelta(minutes=params.past_minutes_end or 0),
            )
        if params.start_date is None or params.end_date is None:
            raise ValidationError("startDate and endDate are required")
        tz = _zone(params.time_zone)
        start = datetime.combine(params.start_date, time.min, tzinfo=tz)
        end = datetime.combine(params.end_date, time.max, tzinfo=tz)
        return cls(start.astimezone(timezone.utc), end.astimezone(timezone.utc))

    def compile_sql(self, params: SqlParams) -> str:
        kind = "DateTime64(3, 'UTC')"
        return (
            f"timestamp >= {params.bind(_format_utc(self.start), kind)}"
            f" AND timestamp <= {params.bind(_format_utc(self.end), kind)}"
        )


def _column(parameter: str) -> str:
    try:
        return FILTER_COLUMNS[parameter]
    except KeyError:
        raise ValidationError(f"Unsupported filter parameter: {parameter}") from None


def compile_filter(filter_: Filter, params: SqlParams) -> Optional[str]:
    column = _column(filter_.parameter)
    values = [str(value) for value in filter_.value]
    if not values:
        return None
    if filter_.type is FilterType.EQUALS:
        return "(" + " OR ".join(f"{column} = {params.bind(v)}" for v in values) + ")"
    if filter_.type is FilterType.NOT_EQUALS:
        return "(" + " AND ".join(f"{column} != {params.bind(v)}" for v in values) + ")"
    if filter_.type is FilterType.CONTAINS:
        return "(" + " OR ".join(f"positionCaseInsensitive({column}, {params.bind(v)}) > 0" for v in values) + ")"
    return "(" + " AND ".join(f"positionCaseInsensitive({column}, {params.bind(v)}) = 0" for v in values) + ")"


def split_session_tokens(filters: Sequence[Filter]):
    """Move ``#token#`` pathname values out of the filters; they select whole sessions."""
    remaining: List[Filter] = []
    tokens: List[str] = []
    for filter_ in filters:
        if filter_.parameter != "pathname":
            remaining.append(filter_)
            continue
        values = []
        for value in filter_.value:
            match = _SESSION_TOKEN.match(value) if isinstance(value, str) else None
            if match:
                tokens.append(match.group(1))
            else:
                values.append(value)
        if values:
            remaining.append(filter_.model_copy(update={"value": values}))
    return remaining, tokens


@dataclass(frozen=True)
class QueryScope:
    """Site, window and filters shared by every store query of one request."""

    site_id: int
    window: TimeWindow
    filters: List[Filter] = field(default_factory=list)

    def compile_sql(self, params: SqlParams, table: str) -> str:
        filters, tokens = split_session_tokens(self.filters)
        site = params.bind(self.site_id, "Int32")
        window = self.window.compile_sql(params)
        clauses = [f"site_id = {site}", window]
        for filter_ in filters:
            clause = compile_filter(filter_, params)
            if clause:
                clauses.append(clause)
        if tokens:
            token_checks = []
            for token in tokens:
                bound = params.bind(token)
                token_checks.append(
                    f"position(ifNull(querystring, ''), {bound}) > 0"
                    f" OR position(ifNull(pathname, ''), {bound}) > 0"
                    f" OR position(ifNull(referrer, ''), {bound}) > 0"
                )
            clauses.append(
                f"session_id IN (SELECT DISTINCT session_id FROM {table}"
                f" WHERE site_id = {site} AND {window} AND ({' OR '.join(token_checks)}))"
            )
        return " AND ".join(clauses)
