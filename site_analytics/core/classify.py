"""
Classification of funnel entries for display.

An entry at step ``i`` for user ``u`` is:

- COMPLETE when ``u`` has an entry at every step;
- PARTIAL when ``u`` has entries at every step from the first through ``i``
  but not at all steps, except that a user seen only at the first step is
  never partial;
- ISOLATED otherwise, and always when the entry has no user id.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence

from site_analytics.models.funnels import Entry, StepResult


class EntryCategory(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    ISOLATED = "isolated"


class DisplayMode(str, Enum):
    LIST = "list"
    GRID = "grid"


_RANK = {
    DisplayMode.LIST: {EntryCategory.COMPLETE: 0, EntryCategory.PARTIAL: 1, EntryCategory.ISOLATED: 2},
    DisplayMode.GRID: {EntryCategory.ISOLATED: 0, EntryCategory.PARTIAL: 1, EntryCategory.COMPLETE: 2},
}


@dataclass(frozen=True)
class Classification:
    global_users: FrozenSet[str] = frozenset()
    prefixes: List[FrozenSet[str]] = field(default_factory=list)
    user_steps: Dict[str, FrozenSet[int]] = field(default_factory=dict)

    def category(self, step_index: int, user_id: Optional[str]) -> EntryCategory:
        if not user_id:
            return EntryCategory.ISOLATED
        if user_id in self.global_users:
            return EntryCategory.COMPLETE
        in_prefix = step_index < len(self.prefixes) and user_id in self.prefixes[step_index]
        only_first = self.user_steps.get(user_id) == frozenset({0})
        if in_prefix and not (step_index == 0 and only_first):
            return EntryCategory.PARTIAL
        return EntryCategory.ISOLATED


def _step_entries(step: StepResult) -> List[Entry]:
    return step.details.entries if step.details else []


def classify(step_results: Sequence[StepResult]) -> Classification:
    """Build the user sets once per funnel result; callers keep it and reuse it for every step's entries."""
    user_sets = [
        frozenset(entry.user_id for entry in _step_entries(step) if entry.user_id) for step in step_results
    ]
    if not user_sets:
        return Classification()

    prefixes = []
    running = user_sets[0]
    for users in user_sets:
        running = running & users
        prefixes.append(running)

    user_steps: Dict[str, set] = {}
    for index, users in enumerate(user_sets):
        for user_id in users:
            user_steps.setdefault(user_id, set()).add(index)

    return Classification(
        global_users=prefixes[-1],
        prefixes=prefixes,
        user_steps={user_id: frozenset(steps) for user_id, steps in user_steps.items()},
    )


def order_entries(
    entries: Sequence[Entry],
    step_index: int,
    classification: Classification,
    mode: DisplayMode = DisplayMode.LIST,
) -> List[Entry]:
    rank = _RANK[DisplayMode(mode)]
    return sorted(entries, key=lambda entry: rank[classification.category(step_index, entry.user_id)])
