import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

import clickhouse_connect
import structlog

from site_analytics.config import settings
from site_analytics.core.predicates import Predicate
from site_analytics.core.sql import SqlParams
from site_analytics.db.filters import QueryScope
from site_analytics.errors import EvaluationError
from site_analytics.models.events import Event

logger = structlog.get_logger()

EVENT_COLUMNS = "user_id, session_id, timestamp, type, pathname, querystring, event_name, props"


def get_client():
    return clickhouse_connect.get_client(
        host=settings.clickhouse_host,
        port=settings.clickhouse_port,
        database=settings.clickhouse_db,
        username=settings.clickhouse_user,
        password=settings.clickhouse_password
    )


async def init_clickhouse():
    client = get_client()

    client.command(f"CREATE DATABASE IF NOT EXISTS {settings.clickhouse_db}")

    client.command(f"""
        CREATE TABLE IF NOT EXISTS {settings.clickhouse_db}.events (
            site_id Int32,
            timestamp DateTime64(3, 'UTC'),
            user_id String,
            session_id String,
            type LowCardinality(String),
            pathname String,
            querystring String,
            page_title String,
            referrer String,
            hostname String,
            channel LowCardinality(String),
            browser LowCardinality(String),
            operating_system LowCardinality(String),
            device_type LowCardinality(String),
            country LowCardinality(String),
            region String,
            city String,
            language LowCardinality(String),
            utm_source String,
            utm_medium String,
            utm_campaign String,
            event_name String,
            props String
        ) ENGINE = MergeTree()
        PARTITION BY toYYYYMM(timestamp)
        ORDER BY (site_id, timestamp, session_id)
    """)


def _parse_props(raw: Any) -> Dict[str, Any]:
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("event_props_unparseable", props=str(raw)[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


def row_to_event(row: Dict[str, Any]) -> Event:
    row = dict(row)
    row["props"] = _parse_props(row.get("props"))
    return Event.from_row(row)


class ClickHouseEventStore:
    """Event store backed by the ClickHouse ``events`` table.

    Every query runs in a worker thread under its own ``query_id``; when the
    awaiting task is cancelled (client disconnect, request timeout) the query
    is killed on the server before the cancellation propagates.
    """

    def __init__(self, client_factory=get_client, database: str = None, timeout: float = None):
        self._client_factory = client_factory
        self.table = f"{database or settings.clickhouse_db}.events"
        self.timeout = timeout or settings.query_timeout_seconds

    async def _query(self, name: str, sql: str, params: SqlParams) -> List[Dict[str, Any]]:
        query_id = f"{name}-{uuid4()}"
        client = self._client_factory()
        query_settings = {"query_id": query_id, "max_execution_time": max(1, int(self.timeout))}
        try:
            result = await asyncio.to_thread(
                client.query, sql, parameters=params.values, settings=query_settings
            )
        except asyncio.CancelledError:
            logger.warning("clickhouse_query_cancelled", query=name, query_id=query_id)
            await self._kill(query_id)
            raise
        except Exception as e:
            logger.error("clickhouse_query_failed", query=name, query_id=query_id, error=str(e))
            raise EvaluationError(f"Event store query failed: {name}") from e
        return list(result.named_results())

    async def _kill(self, query_id: str):
        try:
            await asyncio.to_thread(
                self._client_factory().command,
                "KILL QUERY WHERE query_id = {query_id:String} ASYNC",
                parameters={"query_id": query_id},
            )
        except Exception as e:
            logger.error("clickhouse_kill_failed", query_id=query_id, error=str(e))

    def _events_sql(
        self,
        scope: QueryScope,
        prefilter: Optional[Predicate],
        params: SqlParams,
        order_by: str,
        require_user: bool = False,
    ) -> str:
        where = scope.compile_sql(params, self.table)
        if require_user:
            where += " AND user_id != ''"
        if prefilter is not None:
            where += f" AND {prefilter.compile_sql(params)}"
        return f"SELECT {EVENT_COLUMNS} FROM {self.table} WHERE {where} ORDER BY {order_by}"

    async def fetch_user_events(self, scope: QueryScope, prefilter: Optional[Predicate] = None) -> List[Event]:
        params = SqlParams()
        sql = self._events_sql(scope, prefilter, params, "user_id, timestamp", require_user=True)
        rows = await self._query("user_events", sql, params)
        return [row_to_event(row) for row in rows]

    async def fetch_session_events(self, scope: QueryScope, prefilter: Optional[Predicate] = None) -> List[Event]:
        params = SqlParams()
        sql = self._events_sql(scope, prefilter, params, "session_id, timestamp")
        rows = await self._query("session_events", sql, params)
        return [row_to_event(row) for row in rows]

    async def count_sessions(self, scope: QueryScope) -> int:
        params = SqlParams()
        where = scope.compile_sql(params, self.table)
        sql = f"SELECT COUNT(DISTINCT session_id) AS total_sessions FROM {self.table} WHERE {where}"
        rows = await self._query("total_sessions", sql, params)
        return int(rows[0]["total_sessions"]) if rows else 0

    async def session_pages(
        self, site_id: int, session_ids: Sequence[str]
    ) -> Dict[str, Tuple[Optional[str], Optional[str]]]:
        if not session_ids:
            return {}
        params = SqlParams()
        sql = f"""
            SELECT
                session_id,
                argMin(pathname, timestamp) AS entry_page,
                argMax(pathname, timestamp) AS exit_page
            FROM {self.table}
            WHERE site_id = {params.bind(site_id, "Int32")}
              AND session_id IN {params.bind(list(session_ids), "Array(String)")}
              AND pathname != ''
            GROUP BY session_id
        """
        rows = await self._query("session_pages", sql, params)
        return {row["session_id"]: (row["entry_page"] or None, row["exit_page"] or None) for row in rows}
