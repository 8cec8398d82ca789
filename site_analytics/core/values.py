from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"


Raw = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class Value:
    """A single event property value tagged with its JSON type."""

    kind: ValueKind
    raw: Raw = None

    @classmethod
    def of(cls, raw: Any) -> "Value":
        # bool before number: bool is an int subclass
        if raw is None:
            return NULL
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, (int, float)):
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)
        # nested objects and arrays are compared by their string form
        return cls(ValueKind.STRING, str(raw))

    def as_string(self) -> Optional[str]:
        if self.kind is ValueKind.NULL:
            return None
        if self.kind is ValueKind.BOOLEAN:
            return "true" if self.raw else "false"
        if self.kind is ValueKind.NUMBER and isinstance(self.raw, float) and self.raw.is_integer():
            return str(int(self.raw))
        return str(self.raw)

    def as_float(self) -> Optional[float]:
        if self.kind is ValueKind.NULL:
            return None
        if self.kind is ValueKind.BOOLEAN:
            return 1.0 if self.raw else 0.0
        try:
            return float(self.raw)
        except (TypeError, ValueError):
            return None

    def as_bool(self) -> Optional[int]:
        """Coerce to 0/1; anything that is not clearly a boolean gives None."""
        if self.kind is ValueKind.BOOLEAN:
            return 1 if self.raw else 0
        if self.kind is ValueKind.NUMBER:
            return int(self.raw) if self.raw in (0, 1) else None
        if self.kind is ValueKind.STRING:
            text = self.raw.strip().lower()
            if text in ("1", "true"):
                return 1
            if text in ("0", "false"):
                return 0
        return None


NULL = Value(ValueKind.NULL)


def to_props(raw: Optional[Mapping[str, Any]]) -> Dict[str, Value]:
    if not raw:
        return {}
    return {str(key): Value.of(value) for key, value in raw.items()}


def values_equal(stored: Optional[Value], expected: Raw) -> bool:
    """Compare a stored property against a rule value, directed by the rule value's type."""
    if stored is None or expected is None:
        return False
    if isinstance(expected, bool):
        return stored.as_bool() == (1 if expected else 0)
    if isinstance(expected, (int, float)):
        number = stored.as_float()
        return number is not None and number == float(expected)
    return stored.as_string() == str(expected)
