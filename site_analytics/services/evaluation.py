"""Helpers shared by the funnel and goal services: deadlines, worker threads, bounded fan-out."""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Iterable, List

import structlog

from site_analytics.core.cancel import CancelSignal
from site_analytics.errors import EnrichmentFailure, EvaluationCancelled
from site_analytics.metrics import enrichment_failures_total

logger = structlog.get_logger()


@asynccontextmanager
async def deadline(seconds: float, what: str):
    try:
        async with asyncio.timeout(seconds):
            yield
    except TimeoutError as e:
        raise EvaluationCancelled(f"{what} timed out after {seconds:g}s") from e


async def run_in_worker(func: Callable[..., Any], *args, **kwargs) -> Any:
    """Run ``func`` in a thread, passing a ``cancel`` signal that is set if the caller is cancelled."""
    cancel = CancelSignal()
    try:
        return await asyncio.to_thread(func, *args, cancel=cancel, **kwargs)
    except asyncio.CancelledError:
        cancel.cancel("request cancelled")
        raise


async def gather_all(*aws: Awaitable[Any]) -> List[Any]:
    """Await ``aws`` together; the first failure cancels the others and is raised unwrapped."""
    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(aw) for aw in aws]
    except ExceptionGroup as e:
        raise e.exceptions[0]
    return [task.result() for task in tasks]


async def bounded_gather(aws: Iterable[Awaitable[Any]], limit: int) -> List[Any]:
    """Await all of ``aws`` with at most ``limit`` running at once.

    Exceptions are returned in place of results; cancellation is re-raised.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(aw):
        async with semaphore:
            return await aw

    results = await asyncio.gather(*(run(aw) for aw in aws), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
    return results


async def gather_enrichment(aws: Iterable[Awaitable[Any]], limit: int, kind: str) -> List[Any]:
    """Best-effort ``bounded_gather``: each failed item comes back as an :class:`EnrichmentFailure`."""
    outcomes = await bounded_gather(aws, limit)
    results = []
    for index, outcome in enumerate(outcomes):
        if isinstance(outcome, Exception):
            enrichment_failures_total.labels(kind).inc()
            logger.warning("enrichment_failed", kind=kind, item=index, error=str(outcome))
            outcome = EnrichmentFailure(f"{kind} enrichment failed: {outcome}")
        results.append(outcome)
    return results
