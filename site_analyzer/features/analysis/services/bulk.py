"""
Bulk analysis with bounded concurrency.

At most MAX_CONCURRENT_ANALYSES items run at once; the rest wait for a slot.
The whole batch is bounded by BULK_TIMEOUT_SECONDS and one failing item never
affects the others.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from site_analyzer.features.analysis.schemas.analysis import (
    BulkAnalyzeRequest,
    BulkCrawlRequest,
    BulkCrawlResult,
    BulkItemResult,
    BulkResult,
    CrawlSiteResult,
)
from site_analyzer.features.analysis.services.orchestrator import SiteAnalyzerService
from site_analyzer.platform.cancellation import AnalysisContext, settle_all
from site_analyzer.platform.config import Settings, get_settings
from site_analyzer.platform.exceptions import OperationTimeoutError
from site_analyzer.platform.logger import get_logger

QUEUED_TIMEOUT_MESSAGE = "timed out waiting for an analysis slot"
RUNNING_TIMEOUT_MESSAGE = "timed out"


@dataclass
class ItemOutcome:
    url: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BulkAnalysisService:
    def __init__(
        self,
        analyzer: SiteAnalyzerService,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.analyzer = analyzer
        self.settings = settings or get_settings()
        self.logger = logger or get_logger(__name__)

    async def bulk_analyze(self, request: BulkAnalyzeRequest, context: Optional[AnalysisContext] = None) -> BulkResult:
        """
        Analyze every URL of the batch. Results keep input order.

        Raises:
            CancellationError: the context was cancelled
        """
        self.logger.info(f"Starting bulk analysis of {len(request.urls)} sites")

        outcomes = await self._run_bounded(
            request.urls,
            lambda url, item_context: self.analyzer.analyze(request.item(url), item_context),
            context,
        )

        results = [
            BulkItemResult(url=outcome.url, success=outcome.ok, error=outcome.error, data=outcome.value)
            for outcome in outcomes
        ]
        processed = sum(1 for result in results if result.success)
        failed = len(results) - processed

        self.logger.info(f"Bulk analysis finished: {processed} succeeded, {failed} failed")
        return BulkResult(
            success=True,
            message=f"Analyzed {processed} sites successfully, {failed} failed",
            processed=processed,
            failed=failed,
            results=results,
        )

    async def bulk_crawl(self, request: BulkCrawlRequest, context: Optional[AnalysisContext] = None) -> BulkCrawlResult:
        """
        Crawl every URL of the batch. `processed` counts successful crawls.

        Raises:
            CancellationError: the context was cancelled
        """
        self.logger.info(f"Starting bulk crawl of {len(request.urls)} sites")

        outcomes = await self._run_bounded(
            request.urls,
            lambda url, item_context: self.analyzer.crawl_site(request.item(url), item_context),
            context,
        )

        results: List[CrawlSiteResult] = []
        for outcome in outcomes:
            if outcome.ok:
                results.append(outcome.value)
            else:
                results.append(CrawlSiteResult(url=outcome.url, success=False, error=outcome.error))

        processed = sum(1 for result in results if result.success)
        failed = len(results) - processed

        self.logger.info(f"Bulk crawl finished: {processed} succeeded, {failed} failed")
        return BulkCrawlResult(
            success=True,
            message=f"Crawled {processed} sites successfully, {failed} failed",
            processed=processed,
            failed=failed,
            results=results,
        )

    async def _run_bounded(
        self,
        urls: List[str],
        run: Callable[[str, AnalysisContext], Awaitable[Any]],
        context: Optional[AnalysisContext],
    ) -> List[ItemOutcome]:
        """
        Run `run(url, item_context)` for every URL with bounded concurrency.

        Each item context expires at the earlier of the batch deadline and
        ANALYSIS_TIMEOUT_SECONDS from when its slot was granted.
        """
        batch_context = (context or AnalysisContext.create()).with_timeout(self.settings.BULK_TIMEOUT_SECONDS)
        semaphore = asyncio.Semaphore(self.settings.MAX_CONCURRENT_ANALYSES)
        started = [False] * len(urls)

        async def run_item(index: int, url: str) -> Any:
            async with semaphore:
                batch_context.raise_if_cancelled()
                started[index] = True
                item_context = batch_context.with_timeout(self.settings.ANALYSIS_TIMEOUT_SECONDS)
                return await run(url, item_context)

        tasks = [asyncio.create_task(run_item(index, url)) for index, url in enumerate(urls)]
        _, unsettled = await settle_all(tasks, batch_context)

        outcomes: List[ItemOutcome] = []
        for index, (url, task) in enumerate(zip(urls, tasks)):
            if task in unsettled or task.cancelled():
                error = RUNNING_TIMEOUT_MESSAGE if started[index] else QUEUED_TIMEOUT_MESSAGE
                self.logger.warning(f"Bulk item {url} {error}")
                outcomes.append(ItemOutcome(url, error=error))
                continue

            error = task.exception()
            if error is None:
                outcomes.append(ItemOutcome(url, value=task.result()))
            elif isinstance(error, OperationTimeoutError) and batch_context.expired:
                outcomes.append(ItemOutcome(url, error=RUNNING_TIMEOUT_MESSAGE))
            else:
                self.logger.warning(f"Bulk item {url} failed: {error}")
                outcomes.append(ItemOutcome(url, error=str(error) or type(error).__name__))

        return outcomes
