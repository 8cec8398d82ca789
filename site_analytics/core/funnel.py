"""
Funnel evaluation over a per-user event stream.

A user enters the funnel at their earliest event matching step 1. Each later
step is reached by the earliest matching event whose timestamp is strictly
greater than the time the previous step was reached, so one event can never
satisfy two steps.
"""

from collections import Counter
from dataclasses import dataclass, field
from itertools import groupby
from operator import attrgetter
from typing import Iterable, List, Optional, Sequence

import structlog

from site_analytics.core.cancel import CancelSignal, check
from site_analytics.core.predicates import AnyOf, any_of, entry_label, predicate_for_rule
from site_analytics.errors import FunnelValidationError
from site_analytics.models.events import Event
from site_analytics.models.funnels import Entry, LabelCount, StepDetails, StepResult, StepRule

logger = structlog.get_logger()

MIN_STEPS = 2


def conversion_rate(visitors: int, first_step_visitors: int) -> float:
    if not first_step_visitors:
        return 0.0
    return round(visitors * 100 / first_step_visitors, 2)


def dropoff_rate(visitors: int, previous_visitors: int) -> float:
    if not previous_visitors:
        return 0.0
    return round((1 - visitors / previous_visitors) * 100, 2)


def validate_steps(steps: Sequence[StepRule]):
    if not steps or len(steps) < MIN_STEPS:
        raise FunnelValidationError(f"At least {MIN_STEPS} steps are required for a funnel")


@dataclass
class FunnelRun:
    """Matched events per step: ``hits[i]`` holds one event per user that reached step ``i``."""

    steps: List[StepRule]
    hits: List[List[Event]] = field(default_factory=list)

    @property
    def visitors(self) -> List[int]:
        return [len({event.user_id for event in step_hits}) for step_hits in self.hits]

    def step_results(self, details: Optional[Sequence[Optional[StepDetails]]] = None) -> List[StepResult]:
        visitors = self.visitors
        first = visitors[0] if visitors else 0
        results = []
        for index, rule in enumerate(self.steps):
            results.append(
                StepResult(
                    step_number=index + 1,
                    step_name=rule.display_name,
                    visitors=visitors[index],
                    conversion_rate=conversion_rate(visitors[index], first),
                    dropoff_rate=0.0 if index == 0 else dropoff_rate(visitors[index], visitors[index - 1]),
                    details=details[index] if details else None,
                )
            )
        return results


class FunnelEvaluator:
    def __init__(self, steps: Sequence[StepRule], *, max_entries: int = 15000, top_labels: int = 5):
        validate_steps(steps)
        self.steps = list(steps)
        self.max_entries = max_entries
        self.top_labels = top_labels
        self._predicates = [predicate_for_rule(step) for step in self.steps]

    def prefilter(self) -> AnyOf:
        """Store-side filter selecting events that can match any step."""
        return any_of(self._predicates)

    def evaluate(
        self,
        events: Iterable[Event],
        *,
        presorted: bool = True,
        cancel: Optional[CancelSignal] = None,
    ) -> FunnelRun:
        """Walk every user's events once.

        ``events`` must be grouped by user id and ordered by timestamp within
        each user when ``presorted`` is true; otherwise they are sorted here.
        """
        if not presorted:
            events = sorted(events, key=attrgetter("user_id", "timestamp"))

        run = FunnelRun(self.steps, [[] for _ in self.steps])
        users = 0
        for user_id, user_events in groupby(events, key=attrgetter("user_id")):
            check(cancel)
            if not user_id:
                continue
            users += 1
            for index, hit in enumerate(self._walk(list(user_events))):
                run.hits[index].append(hit)

        logger.debug("funnel_walked", users=users, visitors=run.visitors)
        return run

    def _walk(self, events: List[Event]) -> List[Event]:
        reached: List[Event] = []
        position = 0
        previous = None
        for predicate in self._predicates:
            hit = None
            while position < len(events):
                event = events[position]
                position += 1
                if previous is not None and event.timestamp <= previous:
                    continue
                if predicate.matches(event):
                    hit = event
                    break
            if hit is None:
                break
            reached.append(hit)
            previous = hit.timestamp
        return reached

    def step_details(self, run: FunnelRun, index: int) -> StepDetails:
        rule = self.steps[index]
        hits = sorted(run.hits[index], key=attrgetter("timestamp"))
        labelled = [(entry_label(rule, event), event) for event in hits]

        counts = Counter(label for label, _ in labelled)
        top = [LabelCount(label=label, distinct_users=users) for label, users in counts.most_common(self.top_labels)]
        entries = [
            Entry(
                label=label,
                session_id=event.session_id,
                user_id=event.user_id or None,
                timestamp=event.timestamp,
                kind=event.type,
            )
            for label, event in labelled[: self.max_entries]
        ]
        return StepDetails(kind=rule.kind, top_labels=top, entries=entries)
