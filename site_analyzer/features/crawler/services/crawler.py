"""
Breadth-first crawler.

Visits pages of one site in FIFO order up to a page budget, extracting page
metadata and classifying every link as internal (same hostname as the start
URL) or external. External hostnames are reported as discovered domains.
"""
import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Set
from urllib.parse import urlparse

import httpx

from site_analyzer.features.crawler.schemas.crawl import (
    CrawlError,
    CrawlOptions,
    CrawlResult,
    DiscoveredDomain,
    PageData,
    PageHeadings,
    PageLinks,
)
from site_analyzer.features.crawler.services.page_parser import ParsedPage, unique
from site_analyzer.platform.cancellation import AnalysisContext, with_cancellation
from site_analyzer.platform.config import Settings, get_settings
from site_analyzer.platform.exceptions import CancellationError, OperationTimeoutError
from site_analyzer.platform.logger import get_logger
from site_analyzer.platform.utils.url_validator import (
    extract_base_domain,
    extract_hostname,
    require_valid_url,
    resolve_link,
)

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


class CrawlerService:
    """
    Crawl a website starting from a URL.

    Pass an httpx.AsyncClient to share connections (or to mock transport in
    tests); otherwise a client is opened per crawl.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.settings = settings or get_settings()
        self.logger = logger or get_logger(__name__)

    async def crawl(
        self,
        start_url: str,
        options: Optional[CrawlOptions] = None,
        context: Optional[AnalysisContext] = None,
    ) -> CrawlResult:
        """
        Crawl `start_url` breadth-first.

        Raises:
            ValidationError: start_url is not a valid http(s) URL
            CancellationError: the context was cancelled
            OperationTimeoutError: the crawl deadline passed
        """
        options = options or CrawlOptions()
        context = (context or AnalysisContext.create()).with_timeout(self.settings.CRAWL_TIMEOUT_SECONDS)

        start_url = require_valid_url(start_url)

        if self.client is not None:
            return await self._crawl(self.client, start_url, options, context)

        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await self._crawl(client, start_url, options, context)

    async def _crawl(
        self,
        client: httpx.AsyncClient,
        start_url: str,
        options: CrawlOptions,
        context: AnalysisContext,
    ) -> CrawlResult:
        started = time.monotonic()
        base_hostname = extract_hostname(start_url)
        base_domain = extract_base_domain(base_hostname)
        page_timeout = options.timeout or self.settings.CRAWL_PAGE_TIMEOUT_SECONDS
        user_agent = options.user_agent or self.settings.CRAWL_USER_AGENT
        register_domains = options.discovery_mode or options.follow_external_links

        queue: Deque[str] = deque([start_url])
        queued: Set[str] = {start_url}
        visited: Set[str] = set()
        pages: List[PageData] = []
        discovered: Dict[str, DiscoveredDomain] = {}
        errors: List[CrawlError] = []

        def enqueue(link: str) -> None:
            if link not in visited and link not in queued:
                queue.append(link)
                queued.add(link)

        while queue and len(visited) < options.max_pages:
            context.raise_if_cancelled()
            if context.expired:
                raise OperationTimeoutError(self.settings.CRAWL_TIMEOUT_SECONDS)

            url = queue.popleft()
            if url in visited:
                continue
            visited.add(url)

            self.logger.info(f"Crawling page {len(visited)}/{options.max_pages}: {url}")

            crawl_remaining = context.remaining()
            try:
                page = await with_cancellation(
                    self._fetch_page(client, url, base_hostname, page_timeout, user_agent, options.include_metadata),
                    context,
                    timeout=page_timeout,
                )
            except CancellationError:
                raise
            except OperationTimeoutError:
                # The crawl deadline, not the page timeout, was the binding limit
                if crawl_remaining is not None and crawl_remaining <= page_timeout:
                    raise
                self.logger.warning(f"Timed out crawling {url} after {page_timeout}s")
                errors.append(CrawlError(url=url, error=f"Timed out after {page_timeout}s"))
                continue
            except Exception as e:
                # An unreachable page never fails the crawl
                self.logger.warning(f"Error crawling {url}: {e}")
                errors.append(CrawlError(url=url, error=str(e) or type(e).__name__))
                continue

            pages.append(page)

            for link in page.links.internal:
                enqueue(link)

            for link in page.links.external:
                hostname = urlparse(link).hostname
                if register_domains and hostname and hostname not in discovered:
                    discovered[hostname] = DiscoveredDomain(
                        domain=hostname,
                        source_url=url,
                        discovered_at=datetime.now(timezone.utc),
                        is_internal=extract_base_domain(hostname) == base_domain,
                    )
                if options.follow_external_links:
                    enqueue(link)

        duration_ms = int((time.monotonic() - started) * 1000)
        self.logger.info(
            f"Crawled {len(pages)} page(s) from {start_url} in {duration_ms}ms, "
            f"discovered {len(discovered)} domain(s), {len(errors)} error(s)"
        )

        return CrawlResult(
            start_url=start_url,
            pages_analyzed=len(pages),
            pages=pages,
            discovered_domains=list(discovered.values()),
            errors=errors,
            duration_ms=duration_ms,
        )

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        url: str,
        base_hostname: str,
        page_timeout: float,
        user_agent: str,
        include_metadata: bool,
    ) -> PageData:
        response = await client.get(
            url,
            headers={"User-Agent": user_agent, "Accept": "text/html,application/xhtml+xml"},
            timeout=page_timeout,
            follow_redirects=True,
        )

        # Any HTTP status is a visited page; only transport failures are crawl errors
        content_type = response.headers.get("content-type", "")
        page = PageData(url=url, status_code=response.status_code, content_type=content_type or None)

        if not content_type.lower().startswith(HTML_CONTENT_TYPES):
            return page

        parsed = ParsedPage(response.text)
        final_url = str(response.url)

        internal: List[str] = []
        external: List[str] = []
        for href in parsed.hrefs:
            link = resolve_link(href, final_url)
            if link is None:
                continue
            if urlparse(link).hostname == base_hostname:
                internal.append(link)
            else:
                external.append(link)

        page.title = parsed.title
        page.description = parsed.description
        page.keywords = parsed.keywords
        page.links = PageLinks(internal=unique(internal), external=unique(external))

        if include_metadata:
            page.headings = PageHeadings(
                h1=parsed.headings("h1"),
                h2=parsed.headings("h2"),
                h3=parsed.headings("h3"),
            )
            page.images = parsed.images
            page.scripts = parsed.scripts
            page.stylesheets = parsed.stylesheets
            page.meta = parsed.meta

        return page
