"""
Test bulk analysis coordination

Concurrency bound, input order, failure isolation and batch deadline.
"""
import asyncio
import logging

import pytest

from site_analyzer.features.analysis.schemas.analysis import (
    BulkAnalyzeRequest,
    BulkCrawlRequest,
    CombinedResult,
    CrawlSiteResult,
)
from site_analyzer.features.analysis.services.bulk import (
    QUEUED_TIMEOUT_MESSAGE,
    RUNNING_TIMEOUT_MESSAGE,
    BulkAnalysisService,
)
from site_analyzer.platform.cancellation import AnalysisContext, CancellationToken
from site_analyzer.platform.exceptions import CancellationError, ValidationError


class FakeAnalyzer:
    """Stands in for SiteAnalyzerService, tracking how many calls are in flight."""

    def __init__(self, delays=None, failures=None):
        self.delays = delays or {}
        self.failures = failures or {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.contexts = {}

    async def _enter(self, url, context):
        self.contexts[url] = context
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(url, 0.01))
            if url in self.failures:
                raise self.failures[url]
        finally:
            self.in_flight -= 1

    async def analyze(self, request, context):
        await self._enter(request.url, context)
        return CombinedResult(url=request.url, domain=request.url, display_name=request.url)

    async def crawl_site(self, request, context):
        await self._enter(request.url, context)
        return CrawlSiteResult(url=request.url, success=not request.url.endswith("broken"), pages_analyzed=1)


def build_bulk(analyzer, settings):
    return BulkAnalysisService(analyzer, settings=settings, logger=logging.getLogger("test.bulk"))


class TestBulkAnalyze:

    @pytest.mark.asyncio
    async def test_never_more_than_three_in_flight(self, settings):
        analyzer = FakeAnalyzer(delays={f"https://site{i}.com": 0.05 for i in range(10)})
        service = build_bulk(analyzer, settings)

        result = await service.bulk_analyze(BulkAnalyzeRequest(urls=[f"https://site{i}.com" for i in range(10)]))

        assert analyzer.max_in_flight == 3
        assert result.processed == 10
        assert result.failed == 0

    @pytest.mark.asyncio
    async def test_results_keep_input_order(self, settings):
        urls = ["https://slow.com", "https://fast.com", "https://medium.com"]
        analyzer = FakeAnalyzer(delays={"https://slow.com": 0.2, "https://fast.com": 0.01, "https://medium.com": 0.1})
        service = build_bulk(analyzer, settings)

        result = await service.bulk_analyze(BulkAnalyzeRequest(urls=urls))

        assert [item.url for item in result.results] == urls
        assert all(item.data.url == item.url for item in result.results)

    @pytest.mark.asyncio
    async def test_failure_isolated_to_its_item(self, settings):
        urls = ["https://a.com", "bad url", "https://c.com"]
        analyzer = FakeAnalyzer(failures={"bad url": ValidationError("Invalid URL format: bad url")})
        service = build_bulk(analyzer, settings)

        result = await service.bulk_analyze(BulkAnalyzeRequest(urls=urls))

        assert result.success is True
        assert result.processed == 2
        assert result.failed == 1
        assert result.message == "Analyzed 2 sites successfully, 1 failed"
        assert result.results[1].success is False
        assert result.results[1].error == "Invalid URL format: bad url"
        assert result.results[1].data is None

    @pytest.mark.asyncio
    async def test_batch_deadline_fails_queued_and_running_items(self, settings):
        settings.BULK_TIMEOUT_SECONDS = 0.3
        settings.MAX_CONCURRENT_ANALYSES = 1
        urls = ["https://quick.com", "https://stuck.com", "https://waiting.com"]
        analyzer = FakeAnalyzer(delays={"https://quick.com": 0.01, "https://stuck.com": 10})
        service = build_bulk(analyzer, settings)

        result = await service.bulk_analyze(BulkAnalyzeRequest(urls=urls))

        assert [item.success for item in result.results] == [True, False, False]
        assert result.results[1].error == RUNNING_TIMEOUT_MESSAGE
        assert result.results[2].error == QUEUED_TIMEOUT_MESSAGE
        assert "https://waiting.com" not in analyzer.contexts

    @pytest.mark.asyncio
    async def test_item_deadline_capped_by_analysis_timeout(self, settings):
        settings.BULK_TIMEOUT_SECONDS = 60
        settings.ANALYSIS_TIMEOUT_SECONDS = 1
        analyzer = FakeAnalyzer()
        service = build_bulk(analyzer, settings)

        await service.bulk_analyze(BulkAnalyzeRequest(urls=["https://a.com"]))

        assert analyzer.contexts["https://a.com"].remaining() <= 1

    @pytest.mark.asyncio
    async def test_organization_scope_passed_to_items(self, settings):
        analyzer = FakeAnalyzer()
        service = build_bulk(analyzer, settings)

        await service.bulk_analyze(
            BulkAnalyzeRequest(urls=["https://a.com"]), AnalysisContext.create(organization_id="org-1")
        )

        assert analyzer.contexts["https://a.com"].organization_id == "org-1"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, settings):
        analyzer = FakeAnalyzer(delays={f"https://site{i}.com": 10 for i in range(5)})
        service = build_bulk(analyzer, settings)
        token = CancellationToken()

        batch = asyncio.create_task(
            service.bulk_analyze(
                BulkAnalyzeRequest(urls=[f"https://site{i}.com" for i in range(5)]),
                AnalysisContext.create(token=token),
            )
        )
        await asyncio.sleep(0.05)
        token.cancel("batch aborted")

        with pytest.raises(CancellationError):
            await batch
        assert analyzer.in_flight == 0

    @pytest.mark.asyncio
    async def test_empty_batch(self, settings):
        service = build_bulk(FakeAnalyzer(), settings)

        result = await service.bulk_analyze(BulkAnalyzeRequest(urls=[]))

        assert result.processed == 0
        assert result.results == []


class TestBulkCrawl:

    @pytest.mark.asyncio
    async def test_processed_counts_successful_crawls(self, settings):
        analyzer = FakeAnalyzer(failures={"https://boom.com": RuntimeError("exploded")})
        service = build_bulk(analyzer, settings)

        result = await service.bulk_crawl(
            BulkCrawlRequest(urls=["https://ok.com", "https://site.com/broken", "https://boom.com"])
        )

        assert result.processed == 1
        assert result.failed == 2
        assert result.message == "Crawled 1 sites successfully, 2 failed"
        assert [item.url for item in result.results] == [
            "https://ok.com", "https://site.com/broken", "https://boom.com",
        ]
        assert result.results[2].error == "exploded"

    @pytest.mark.asyncio
    async def test_crawl_bounded_like_analysis(self, settings):
        analyzer = FakeAnalyzer(delays={f"https://site{i}.com": 0.05 for i in range(7)})
        service = build_bulk(analyzer, settings)

        await service.bulk_crawl(BulkCrawlRequest(urls=[f"https://site{i}.com" for i in range(7)]))

        assert analyzer.max_in_flight == 3
