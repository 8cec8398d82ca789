"""
Structured matching rules for funnel steps and goals.

A predicate is built once per rule and used two ways: ``matches`` evaluates a
single in-memory event, ``compile_sql`` renders a ClickHouse WHERE fragment
that the event store uses as a prefilter. The store-side fragment may select
more rows than ``matches`` accepts (property equality is only checked in
process); in-process evaluation decides the result.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from site_analytics.core.patterns import MatchScope, UrlPattern, parse_url_pattern
from site_analytics.core.sql import SqlParams
from site_analytics.core.values import Raw, values_equal
from site_analytics.models.events import Event, EventType
from site_analytics.models.funnels import StepRule

_TARGET_SQL = {
    MatchScope.PATHNAME: "pathname",
    MatchScope.QUERYSTRING: "ifNull(querystring, '')",
    MatchScope.FULL_URL: "concat(ifNull(pathname, ''), '?', ifNull(querystring, ''))",
}


class Predicate:
    def matches(self, event: Event) -> bool:
        raise NotImplementedError

    def compile_sql(self, params: SqlParams) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class PagePredicate(Predicate):
    url: UrlPattern

    def matches(self, event: Event) -> bool:
        return event.type == EventType.PAGEVIEW and self.url.matches(event.pathname, event.querystring)

    def compile_sql(self, params: SqlParams) -> str:
        regex = self.url.regex
        if regex is None:
            return "0"
        return f"(type = 'pageview' AND match({_TARGET_SQL[self.url.scope]}, {params.bind(regex)}))"


@dataclass(frozen=True)
class EventPredicate(Predicate):
    event_name: str
    property_key: Optional[str] = None
    property_value: Raw = None

    def matches(self, event: Event) -> bool:
        if event.type != EventType.CUSTOM_EVENT or event.event_name != self.event_name:
            return False
        if self.property_key and self.property_value is not None:
            return values_equal(event.prop(self.property_key), self.property_value)
        return True

    def compile_sql(self, params: SqlParams) -> str:
        return f"(type = 'custom_event' AND event_name = {params.bind(self.event_name)})"

    def label(self, event: Event) -> str:
        if not self.property_key:
            return event.event_name or ""
        stored = event.prop(self.property_key)
        text = stored.as_string() if stored is not None else None
        return f"{event.event_name} {text if text is not None else ''}"


@dataclass(frozen=True)
class AnyOf(Predicate):
    children: Tuple[Predicate, ...]

    def matches(self, event: Event) -> bool:
        return any(child.matches(event) for child in self.children)

    def compile_sql(self, params: SqlParams) -> str:
        if not self.children:
            return "0"
        return "(" + " OR ".join(child.compile_sql(params) for child in self.children) + ")"


def any_of(predicates: Sequence[Predicate]) -> AnyOf:
    # duplicates would only repeat work in both forms
    return AnyOf(tuple(dict.fromkeys(predicates)))


def predicate_for_rule(rule: StepRule) -> Predicate:
    if rule.kind == "page":
        return PagePredicate(parse_url_pattern(rule.value))
    return EventPredicate(rule.value, rule.event_property_key, rule.event_property_value)


def step_matches(rule: StepRule, event: Event) -> bool:
    return predicate_for_rule(rule).matches(event)


def entry_label(rule: StepRule, event: Event) -> str:
    predicate = predicate_for_rule(rule)
    if isinstance(predicate, EventPredicate):
        return predicate.label(event)
    return event.pathname or ""
