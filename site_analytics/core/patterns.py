"""
Wildcard patterns for page steps and path goals.

    /blog          exact pathname
    /blog/*        one path segment (no "/")
    /blog/**       anything below /blog, "/" included
    ***pricing***  "pricing" anywhere in the target
    #fbclid#       "fbclid" anywhere in pathname + "?" + querystring
    #fbclid        "fbclid" anywhere in the querystring

Compiled expressions only use syntax shared by Python's re and RE2, so the
same source string is sent to ClickHouse ``match()``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable, Optional

from site_analytics.errors import PatternError

CONTAINS_MARKER = "***"

_REGEX_SPECIAL = set("\\.^$|?+()[]{}")
_WILDCARD = re.compile(r"(\*\*|\*)")


class MatchScope(str, Enum):
    PATHNAME = "pathname"
    QUERYSTRING = "querystring"
    FULL_URL = "full_url"


def _escape(literal: str) -> str:
    return "".join("\\" + ch if ch in _REGEX_SPECIAL else ch for ch in literal)


def _translate(pattern: str) -> str:
    parts = []
    for token in _WILDCARD.split(pattern):
        if token == "**":
            parts.append(".*")
        elif token == "*":
            parts.append("[^/]*")
        elif token:
            parts.append(_escape(token))
    return "".join(parts)


def _is_contains(pattern: str) -> bool:
    return (
        len(pattern) > 2 * len(CONTAINS_MARKER)
        and pattern.startswith(CONTAINS_MARKER)
        and pattern.endswith(CONTAINS_MARKER)
    )


def pattern_to_regex(pattern: str) -> Optional[str]:
    """Regex source for ``pattern``; None when the pattern can never match."""
    if not pattern:
        return None
    if _is_contains(pattern):
        inner = pattern[len(CONTAINS_MARKER):-len(CONTAINS_MARKER)]
        if _is_contains(inner):
            return pattern_to_regex(inner)
        return _translate(inner)
    return "^" + _translate(pattern) + "$"


def _never(target: str) -> bool:
    return False


@lru_cache(maxsize=4096)
def compile_regex(pattern: str) -> Optional["re.Pattern[str]"]:
    source = pattern_to_regex(pattern)
    if source is None:
        return None
    try:
        return re.compile(source)
    except re.error as e:
        raise PatternError(f"invalid pattern {pattern!r}: {e}") from e


def compile_pattern(pattern: str) -> Callable[[str], bool]:
    regex = compile_regex(pattern)
    if regex is None:
        return _never
    # RE2 "$" never matches before a trailing newline, Python's does
    find = regex.search if _is_contains(pattern) else regex.fullmatch

    def predicate(target: str) -> bool:
        return target is not None and find(target) is not None

    return predicate


@dataclass(frozen=True)
class UrlPattern:
    raw: str
    scope: MatchScope
    effective: str

    @property
    def regex(self) -> Optional[str]:
        return pattern_to_regex(self.effective)

    def target(self, pathname: Optional[str], querystring: Optional[str]) -> str:
        if self.scope is MatchScope.QUERYSTRING:
            return querystring or ""
        if self.scope is MatchScope.FULL_URL:
            return f"{pathname or ''}?{querystring or ''}"
        return pathname or ""

    def matches(self, pathname: Optional[str], querystring: Optional[str]) -> bool:
        if self.scope is MatchScope.PATHNAME and pathname is None:
            return False
        return compile_pattern(self.effective)(self.target(pathname, querystring))


def _force_contains(token: str) -> str:
    if CONTAINS_MARKER in token:
        return token
    return f"{CONTAINS_MARKER}{token}{CONTAINS_MARKER}"


@lru_cache(maxsize=4096)
def parse_url_pattern(pattern: str) -> UrlPattern:
    """Resolve the hash-token forms into a scope plus a plain pattern."""
    pattern = pattern or ""
    if len(pattern) > 2 and pattern.startswith("#") and pattern.endswith("#"):
        return UrlPattern(pattern, MatchScope.FULL_URL, _force_contains(pattern[1:-1]))
    if len(pattern) > 1 and pattern.startswith("#"):
        return UrlPattern(pattern, MatchScope.QUERYSTRING, _force_contains(pattern[1:]))
    return UrlPattern(pattern, MatchScope.PATHNAME, pattern)
