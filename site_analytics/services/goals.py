import math
import time
from typing import List, Optional, Sequence

import structlog

from site_analytics.config import Settings, settings as default_settings
from site_analytics.core.goals import GoalEvaluator, attach_session_pages
from site_analytics.db.filters import QueryScope, TimeWindow
from site_analytics.errors import EnrichmentFailure, EvaluationCancelled, EvaluationError, ValidationError
from site_analytics.metrics import evaluation_duration, evaluations_total
from site_analytics.models.goals import GoalResult, GoalsPage, PageMeta
from site_analytics.models.query import Filter, TimeWindowParams
from site_analytics.services.evaluation import deadline, gather_all, gather_enrichment, run_in_worker

logger = structlog.get_logger()

MAX_PAGE_SIZE = 1_000_000
SORT_FIELDS = ("goalId", "name", "goalType", "createdAt")


def validate_pagination(page: int, page_size: int):
    if page < 1:
        raise ValidationError("Invalid page number")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"Invalid page size, must be between 1 and {MAX_PAGE_SIZE}")


class GoalService:
    def __init__(self, store, repository, authorizer, settings: Settings = default_settings):
        self.store = store
        self.repository = repository
        self.authorizer = authorizer
        self.settings = settings

    async def conversions(
        self,
        site_id: int,
        window_params: TimeWindowParams,
        filters: Sequence[Filter] = (),
        *,
        page: int = 1,
        page_size: int = MAX_PAGE_SIZE,
        sort: str = "createdAt",
        order: str = "desc",
        api_key: Optional[str] = None,
    ) -> GoalsPage:
        validate_pagination(page, page_size)
        window = TimeWindow.from_params(window_params)
        await self.authorizer.ensure_can_read(site_id, api_key)

        sort = sort if sort in SORT_FIELDS else "createdAt"
        order = "asc" if order == "asc" else "desc"
        goals, total = await self.repository.list_goals(site_id, page=page, page_size=page_size, sort=sort, order=order)
        meta = PageMeta(total=total, page=page, page_size=page_size, total_pages=math.ceil(total / page_size))
        if not goals:
            return GoalsPage(data=[], meta=meta)

        evaluator = GoalEvaluator(goals)
        scope = QueryScope(site_id, window, list(filters))

        start_time = time.monotonic()
        try:
            async with deadline(self.settings.query_timeout_seconds, "goals"):
                total_sessions, events = await gather_all(
                    self.store.count_sessions(scope),
                    self._fetch_events(evaluator, scope),
                )
                results = await run_in_worker(evaluator.evaluate_all, events, total_sessions)
                results = await self._attach_pages(site_id, results)
        except EvaluationCancelled:
            evaluations_total.labels("goals", "cancelled").inc()
            logger.warning("goals_cancelled", site_id=site_id, goals=len(goals))
            raise
        except EvaluationError:
            evaluations_total.labels("goals", "error").inc()
            raise

        evaluations_total.labels("goals", "ok").inc()
        evaluation_duration.labels("goals").observe(time.monotonic() - start_time)
        logger.info(
            "goals_evaluated",
            site_id=site_id,
            goals=len(goals),
            evaluated=len(results),
            events=len(events),
            total_sessions=total_sessions,
        )
        return GoalsPage(data=results, meta=meta)

    async def _fetch_events(self, evaluator: GoalEvaluator, scope: QueryScope):
        if not evaluator.goals:
            return []
        return await self.store.fetch_session_events(scope, evaluator.prefilter())

    async def _attach_pages(self, site_id: int, results: List[GoalResult]) -> List[GoalResult]:
        pending = [index for index, result in enumerate(results) if result.kind == "path" and result.matched_entries]
        if not pending:
            return results

        lookups = await gather_enrichment(
            (
                self.store.session_pages(site_id, [entry.session_id for entry in results[index].matched_entries])
                for index in pending
            ),
            self.settings.enrichment_concurrency,
            "goals",
        )
        enriched = list(results)
        for index, pages in zip(pending, lookups):
            if isinstance(pages, EnrichmentFailure):
                logger.info("goal_pages_omitted", goal_id=results[index].id)
                continue
            enriched[index] = attach_session_pages(results[index], pages)
        return enriched
