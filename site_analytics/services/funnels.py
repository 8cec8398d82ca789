import asyncio
import time
from typing import List, Optional

import structlog

from site_analytics.config import Settings, settings as default_settings
from site_analytics.core.funnel import FunnelEvaluator, FunnelRun, validate_steps
from site_analytics.db.filters import QueryScope, TimeWindow
from site_analytics.errors import EnrichmentFailure, EvaluationCancelled, EvaluationError
from site_analytics.metrics import evaluation_duration, evaluations_total
from site_analytics.models.funnels import FunnelRequest, StepDetails, StepResult
from site_analytics.services.evaluation import deadline, gather_enrichment, run_in_worker

logger = structlog.get_logger()


class FunnelService:
    def __init__(self, store, authorizer, settings: Settings = default_settings):
        self.store = store
        self.authorizer = authorizer
        self.settings = settings

    async def analyze(self, site_id: int, request: FunnelRequest, api_key: Optional[str] = None) -> List[StepResult]:
        validate_steps(request.steps)
        window = TimeWindow.from_params(request)
        await self.authorizer.ensure_can_read(site_id, api_key)

        evaluator = FunnelEvaluator(
            request.steps,
            max_entries=self.settings.max_funnel_entries,
            top_labels=self.settings.top_labels,
        )
        scope = QueryScope(site_id, window, list(request.filters))

        start_time = time.monotonic()
        try:
            async with deadline(self.settings.query_timeout_seconds, "funnel"):
                events = await self.store.fetch_user_events(scope, evaluator.prefilter())
                run = await run_in_worker(evaluator.evaluate, events)
                details = await self._details(evaluator, run)
        except EvaluationCancelled:
            evaluations_total.labels("funnel", "cancelled").inc()
            logger.warning("funnel_cancelled", site_id=site_id, steps=len(request.steps))
            raise
        except EvaluationError:
            evaluations_total.labels("funnel", "error").inc()
            raise

        results = run.step_results(details)
        evaluations_total.labels("funnel", "ok").inc()
        evaluation_duration.labels("funnel").observe(time.monotonic() - start_time)
        logger.info(
            "funnel_evaluated",
            site_id=site_id,
            steps=len(results),
            events=len(events),
            visitors=[result.visitors for result in results],
        )
        return results

    async def _details(self, evaluator: FunnelEvaluator, run: FunnelRun) -> List[Optional[StepDetails]]:
        outcomes = await gather_enrichment(
            (asyncio.to_thread(evaluator.step_details, run, index) for index in range(len(run.steps))),
            self.settings.enrichment_concurrency,
            "funnel",
        )
        return [None if isinstance(outcome, EnrichmentFailure) else outcome for outcome in outcomes]
