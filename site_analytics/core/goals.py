"""
Batch evaluation of single-step goals.

All goals are tested against every event in a single pass; each goal keeps
its own accumulator of converting sessions. Conversion rates share one
denominator, the number of distinct sessions in the filtered window, which
the caller computes once.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from site_analytics.core.cancel import CancelSignal, check
from site_analytics.core.patterns import parse_url_pattern
from site_analytics.core.predicates import AnyOf, EventPredicate, PagePredicate, Predicate, any_of
from site_analytics.models.events import Event
from site_analytics.models.goals import GoalDefinition, GoalResult, MatchedEntry

logger = structlog.get_logger()

CANCEL_CHECK_EVERY = 1000

SessionPages = Mapping[str, Tuple[Optional[str], Optional[str]]]


def goal_predicate(goal: GoalDefinition) -> Optional[Predicate]:
    """Predicate for ``goal``, or None when its configuration is incomplete."""
    config = goal.config
    if goal.kind == "path":
        if not config.path_pattern:
            return None
        return PagePredicate(parse_url_pattern(config.path_pattern))
    if goal.kind == "event":
        if not config.event_name:
            return None
        return EventPredicate(config.event_name, config.event_property_key, config.event_property_value)
    return None


@dataclass
class _SessionMatch:
    user_id: Optional[str]
    label: Optional[str]
    matched_at: datetime


@dataclass
class _Accumulator:
    goal: GoalDefinition
    predicate: Predicate
    sessions: Dict[str, _SessionMatch] = field(default_factory=dict)
    labels: Dict[str, None] = field(default_factory=dict)

    def add(self, event: Event):
        label = event.pathname if self.goal.kind == "path" else event.event_name
        if label:
            self.labels.setdefault(label, None)
        match = self.sessions.get(event.session_id)
        if match is None:
            self.sessions[event.session_id] = _SessionMatch(event.user_id or None, label, event.timestamp)
        elif event.timestamp < match.matched_at:
            match.label = label
            match.matched_at = event.timestamp


class GoalEvaluator:
    def __init__(self, goals: Sequence[GoalDefinition]):
        self._active: List[Tuple[GoalDefinition, Predicate]] = []
        for goal in goals:
            predicate = goal_predicate(goal)
            if predicate is None:
                logger.debug("goal_skipped", goal_id=goal.id, kind=goal.kind)
                continue
            self._active.append((goal, predicate))

    @property
    def goals(self) -> List[GoalDefinition]:
        return [goal for goal, _ in self._active]

    def prefilter(self) -> AnyOf:
        return any_of([predicate for _, predicate in self._active])

    def evaluate_all(
        self,
        events: Iterable[Event],
        total_sessions: int,
        *,
        cancel: Optional[CancelSignal] = None,
    ) -> List[GoalResult]:
        accumulators = [_Accumulator(goal, predicate) for goal, predicate in self._active]
        scanned = 0
        for event in events:
            if scanned % CANCEL_CHECK_EVERY == 0:
                check(cancel)
            scanned += 1
            if not event.session_id:
                continue
            for accumulator in accumulators:
                if accumulator.predicate.matches(event):
                    accumulator.add(event)

        logger.debug("goals_scanned", events=scanned, goals=len(accumulators))
        return [self._result(accumulator, total_sessions) for accumulator in accumulators]

    def _result(self, accumulator: _Accumulator, total_sessions: int) -> GoalResult:
        goal = accumulator.goal
        is_path = goal.kind == "path"
        conversions = len(accumulator.sessions)
        entries = [
            MatchedEntry(
                session_id=session_id,
                user_id=match.user_id,
                matched_label=match.label,
                matched_at=match.matched_at,
            )
            for session_id, match in accumulator.sessions.items()
        ]
        labels = list(accumulator.labels)
        return GoalResult(
            **goal.model_dump(),
            total_conversions=conversions,
            total_sessions=total_sessions,
            conversion_rate=conversions / total_sessions if total_sessions else 0.0,
            match_scope="pathname" if is_path else "custom_event",
            path_regex=parse_url_pattern(goal.config.path_pattern).regex if is_path else None,
            matched_pages=labels if is_path else None,
            matched_actions=None if is_path else labels,
            matched_entries=entries,
        )


def attach_session_pages(result: GoalResult, pages: SessionPages) -> GoalResult:
    """Fill entry/exit pages of a path goal's matched sessions from a session-keyed lookup."""
    if result.kind != "path":
        return result
    entries = []
    for entry in result.matched_entries:
        entry_page, exit_page = pages.get(entry.session_id, (None, None))
        entries.append(entry.model_copy(update={"entry_page": entry_page, "exit_page": exit_page}))
    return result.model_copy(update={"matched_entries": entries})
