"""Bound-parameter collection for ClickHouse query fragments.

User supplied values never appear in query text; fragments reference them
through ``{name:Type}`` placeholders that ``clickhouse-connect`` binds on the
server side.
"""

from typing import Any, Dict


class SqlParams:
    def __init__(self, prefix: str = "p"):
        self._prefix = prefix
        self.values: Dict[str, Any] = {}

    def bind(self, value: Any, type_: str = "String") -> str:
        name = f"{self._prefix}{len(self.values)}"
        self.values[name] = value
        return f"{{{name}:{type_}}}"
