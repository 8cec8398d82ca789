from operator import attrgetter

from site_analytics.errors import AuthorizationError, EvaluationError


class FakeEventStore:
    """In-memory stand-in for the ClickHouse store; scope filters are ignored."""

    def __init__(self, events=(), fail=False, fail_session_pages=False):
        self.events = list(events)
        self.fail = fail
        self.fail_session_pages = fail_session_pages
        self.calls = []

    def _check(self, name):
        self.calls.append(name)
        if self.fail:
            raise EvaluationError(f"{name} failed")

    async def fetch_user_events(self, scope, prefilter=None):
        self._check("user_events")
        events = [e for e in self.events if e.user_id and (prefilter is None or prefilter.matches(e))]
        return sorted(events, key=attrgetter("user_id", "timestamp"))

    async def fetch_session_events(self, scope, prefilter=None):
        self._check("session_events")
        events = [e for e in self.events if prefilter is None or prefilter.matches(e)]
        return sorted(events, key=attrgetter("session_id", "timestamp"))

    async def count_sessions(self, scope):
        self._check("total_sessions")
        return len({e.session_id for e in self.events})

    async def session_pages(self, site_id, session_ids):
        self.calls.append("session_pages")
        if self.fail_session_pages:
            raise RuntimeError("lookup failed")
        pages = {}
        for event in sorted(self.events, key=attrgetter("timestamp")):
            if event.session_id in session_ids and event.pathname:
                entry, _ = pages.get(event.session_id, (event.pathname, None))
                pages[event.session_id] = (entry, event.pathname)
        return pages


class FakeAuthorizer:
    def __init__(self, readable=(1,)):
        self.readable = set(readable)
        self.checked = []

    async def ensure_can_read(self, site_id, api_key):
        self.checked.append(site_id)
        if site_id not in self.readable:
            raise AuthorizationError("Forbidden")


class FakeGoalRepository:
    def __init__(self, goals=()):
        self.goals = list(goals)

    async def list_goals(self, site_id, *, page=1, page_size=1_000_000, sort="createdAt", order="desc"):
        start = (page - 1) * page_size
        return self.goals[start:start + page_size], len(self.goals)
