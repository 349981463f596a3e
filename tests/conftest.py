"""
Test configuration and fixtures for the site analyzer.

Provides settings with short timeouts, an in-memory repository, configurable
fake probes and an httpx MockTransport serving a small fixture site.
"""
import asyncio
import socket
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from dotenv import load_dotenv

from site_analyzer.features.analysis.models.audit_result import AuditCategory
from site_analyzer.features.analysis.probes.base import BaseProbe
from site_analyzer.features.analysis.schemas.analysis import (
    AuditResultCreate,
    AuditResultRead,
    DomainRecordRead,
)
from site_analyzer.features.analysis.schemas.probes import (
    DnsResult,
    Technology,
    TechnologyResult,
)
from site_analyzer.features.crawler.services.crawler import CrawlerService
from site_analyzer.platform.config import Settings
from site_analyzer.platform.db.base import utc_now
from site_analyzer.platform.exceptions import PersistenceError

load_dotenv()


@pytest.fixture
def settings() -> Settings:
    """Settings with timeouts short enough for the suite."""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        FRESHNESS_WINDOW_HOURS=24,
        ANALYSIS_TIMEOUT_SECONDS=2,
        BULK_TIMEOUT_SECONDS=5,
        MAX_CONCURRENT_ANALYSES=3,
        PROBE_TIMEOUT_SECONDS=2,
        CRAWL_TIMEOUT_SECONDS=5,
        CRAWL_PAGE_TIMEOUT_SECONDS=1,
        BROWSER_POOL_SIZE=2,
        BROWSER_ACQUIRE_TIMEOUT_SECONDS=0.5,
    )


# ─────────────────────────────────────────────────────────────
# Repository
# ─────────────────────────────────────────────────────────────


class FakeRepository:
    """In-memory AnalysisRepository. Set `fail_on` to make an operation raise PersistenceError."""

    def __init__(self):
        self.records: Dict[str, DomainRecordRead] = {}
        self.audits: List[AuditResultRead] = []
        self.fail_on: set = set()
        self.calls: List[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise PersistenceError(f"{operation} unavailable")

    async def find_domain_record(self, domain, organization_id):
        self._check("find_domain_record")
        for record in self.records.values():
            if record.domain == domain and record.organization_id == organization_id:
                return record
        return None

    async def upsert_domain_record(self, domain, display_name, organization_id):
        self._check("upsert_domain_record")
        for record in self.records.values():
            if record.domain == domain and record.organization_id == organization_id:
                return record
        record = DomainRecordRead(
            id=str(uuid.uuid4()),
            domain=domain,
            display_name=display_name,
            organization_id=organization_id,
            created_at=utc_now(),
            updated_at=utc_now(),
        )
        self.records[record.id] = record
        return record

    async def mark_analyzed(self, domain_record_id, analyzed_at):
        self._check("mark_analyzed")
        record = self.records[domain_record_id]
        self.records[domain_record_id] = record.model_copy(update={"last_analyzed_at": analyzed_at})

    async def create_audit_result(self, audit: AuditResultCreate):
        self._check("create_audit_result")
        self._check(f"create_audit_result:{audit.category.value}")
        row = AuditResultRead(id=str(uuid.uuid4()), created_at=utc_now(), **audit.model_dump())
        self.audits.append(row)
        return row

    async def find_latest_audit_result(self, domain_record_id, category):
        self._check("find_latest_audit_result")
        rows = [a for a in self.audits if a.domain_record_id == domain_record_id and a.category == category]
        return rows[-1] if rows else None

    def seed_analysis(self, domain: str, created_at: datetime, payload: Dict[str, Any], organization_id=None):
        record = DomainRecordRead(id=str(uuid.uuid4()), domain=domain, organization_id=organization_id)
        self.records[record.id] = record
        self.audits.append(
            AuditResultRead(
                id=str(uuid.uuid4()),
                domain_record_id=record.id,
                url=f"https://{domain}",
                category=AuditCategory.site_analysis,
                status="completed",
                results=payload,
                created_at=created_at,
            )
        )
        return record

    def audits_for(self, category: AuditCategory) -> List[AuditResultRead]:
        return [a for a in self.audits if a.category == category]


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


# ─────────────────────────────────────────────────────────────
# Probes
# ─────────────────────────────────────────────────────────────


def dns_error(hostname: str) -> socket.gaierror:
    return socket.gaierror(-2, f"Name or service not known: {hostname}")


class FakeProbe(BaseProbe):
    """
    Probe whose behaviour is a function of the hostname-bearing URL.

    `behaviour(url)` returns a result, raises, or is a coroutine function for
    slow probes. Every call is recorded in `calls`.
    """

    def __init__(
        self,
        category: AuditCategory,
        behaviour: Callable[[str], Any],
        requires_browser: bool = False,
        timeout_seconds: Optional[float] = None,
    ):
        self.category = category
        self.behaviour = behaviour
        self.requires_browser = requires_browser
        self.timeout_seconds = timeout_seconds
        self.calls: List[str] = []
        self.sessions: List[Any] = []

    async def run(self, url: str, session: Optional[Any] = None) -> Any:
        self.calls.append(url)
        self.sessions.append(session)
        outcome = self.behaviour(url)
        if asyncio.iscoroutine(outcome):
            outcome = await outcome
        return outcome


def technology_result(*names: str) -> TechnologyResult:
    return TechnologyResult.from_technologies([Technology(name=name) for name in names])


@pytest.fixture
def technology_probe() -> FakeProbe:
    return FakeProbe(AuditCategory.technology_detection, lambda url: technology_result("WordPress", "Nginx"))


@pytest.fixture
def dns_probe() -> FakeProbe:
    return FakeProbe(AuditCategory.dns, lambda url: DnsResult(a=["93.184.216.34"], ns=["ns1.example.com"]))


class FakeSessionPool:
    """BrowserSessionPool double that hands out numbered sessions."""

    def __init__(self, size: int = 1):
        self.size = size
        self.available = asyncio.Queue()
        for number in range(size):
            self.available.put_nowait(f"session-{number}")
        self.acquired = 0
        self.released: List[Any] = []
        self.closed = False

    async def acquire(self):
        session = await self.available.get()
        self.acquired += 1
        return session

    async def release(self, session):
        self.released.append(session)
        self.available.put_nowait(session)

    async def close(self):
        self.closed = True


# ─────────────────────────────────────────────────────────────
# HTTP fixture site
# ─────────────────────────────────────────────────────────────


SITE_PAGES = {
    "https://example.com": """
        <html><head>
          <title>Example Home</title>
          <meta name="description" content="The example home page">
          <meta name="keywords" content="example, testing">
          <link rel="stylesheet" href="/static/site.css">
          <script src="/static/app.js"></script>
        </head><body>
          <h1>Welcome</h1>
          <h2>Latest</h2>
          <img src="/logo.png">
          <a href="/about">About</a>
          <a href="/blog#top">Blog</a>
          <a href="https://twitter.com/example">Twitter</a>
          <a href="https://blog.example.com/post">Our blog</a>
          <a href="mailto:hello@example.com">Mail</a>
          <a href="tel:+123456">Call</a>
          <a href="javascript:void(0)">Nothing</a>
          <a href="#section">Anchor</a>
          <a href="ftp://files.example.com/readme">Files</a>
        </body></html>
    """,
    "https://example.com/about": """
        <html><head><title>About</title></head><body>
          <a href="/">Home</a>
          <a href="/contact">Contact</a>
          <a href="https://twitter.com/example/about">Twitter again</a>
          <a href="https://github.com/example">GitHub</a>
        </body></html>
    """,
    "https://example.com/blog": """
        <html><head><title>Blog</title></head><body>
          <a href="/about">About</a>
          <a href="/feed.xml">Feed</a>
        </body></html>
    """,
    "https://example.com/contact": """
        <html><head><title>Contact</title></head><body>
          <a href="https://linkedin.com/company/example">LinkedIn</a>
        </body></html>
    """,
}


class FixtureSite:
    """MockTransport handler serving SITE_PAGES, recording every request."""

    def __init__(self, pages: Optional[Dict[str, str]] = None, failing: Optional[Dict[str, int]] = None):
        self.pages = dict(SITE_PAGES if pages is None else pages)
        self.failing = failing or {}
        self.requests: List[str] = []
        self.delays: Dict[str, float] = {}
        self.unreachable: set = set()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url).rstrip("/")
        self.requests.append(url)

        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        if url in self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)
        if url in self.failing and url in self.pages:
            return httpx.Response(
                self.failing[url], headers={"content-type": "text/html; charset=utf-8"}, text=self.pages[url]
            )
        if url in self.failing:
            return httpx.Response(self.failing[url], text="error")
        if url.endswith(".xml"):
            return httpx.Response(200, headers={"content-type": "application/xml"}, text="<rss/>")
        if url in self.pages:
            return httpx.Response(
                200, headers={"content-type": "text/html; charset=utf-8"}, text=self.pages[url]
            )
        return httpx.Response(404, text="not found")


@pytest.fixture
def fixture_site() -> FixtureSite:
    return FixtureSite()


@pytest.fixture
async def http_client(fixture_site):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fixture_site)) as client:
        yield client


@pytest.fixture
def crawler(http_client, settings) -> CrawlerService:
    return CrawlerService(client=http_client, settings=settings)
