"""
Site analysis orchestration.

analyze() runs the requested probes for one URL concurrently, tolerates the
failure of any of them, and persists each successful probe result as it
settles followed by one combined `site-analysis` row that also records which
probes degraded and why. A recent combined row is served from storage
without probing.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaValidationError

from site_analyzer.features.analysis.models.audit_result import AuditCategory, AuditStatus
from site_analyzer.features.analysis.probes.base import BaseProbe
from site_analyzer.features.analysis.repositories.base import AnalysisRepository
from site_analyzer.features.analysis.schemas.analysis import (
    AnalyzeRequest,
    AuditResultCreate,
    CombinedResult,
    CrawlRequest,
    CrawlSiteResult,
    DomainRecordRead,
    ensure_utc,
)
from site_analyzer.features.analysis.schemas.probes import (
    AccessibilityResult,
    DnsResult,
    LighthouseResult,
    TechnologyResult,
    dump_result,
    result_score,
)
from site_analyzer.features.analysis.services.fallback import (
    DnsFailurePredicate,
    is_dns_failure,
    run_with_fallback,
)
from site_analyzer.features.crawler.schemas.crawl import CrawlOptions, CrawlResult
from site_analyzer.features.crawler.services.crawler import CrawlerService
from site_analyzer.platform.browser_pool import BrowserSessionPool
from site_analyzer.platform.cancellation import AnalysisContext, settle_all, with_cancellation
from site_analyzer.platform.config import Settings, get_settings
from site_analyzer.platform.db.base import utc_now
from site_analyzer.platform.exceptions import (
    AnalysisTimeoutError,
    CancellationError,
    OperationTimeoutError,
    PersistenceError,
    ProbeError,
)
from site_analyzer.platform.logger import get_logger
from site_analyzer.platform.utils.url_validator import (
    extract_hostname,
    generate_display_name,
    require_valid_url,
)

# Order in which units are dispatched and reported as degraded
DISPATCH_ORDER = (
    AuditCategory.technology_detection,
    AuditCategory.domain_discovery,
    AuditCategory.accessibility,
    AuditCategory.performance,
    AuditCategory.dns,
)


@dataclass
class UnitOutcome:
    category: AuditCategory
    result: Any
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


def empty_result(category: AuditCategory, url: str, hostname: str) -> Any:
    if category == AuditCategory.technology_detection:
        return TechnologyResult.empty(final_url=url)
    if category == AuditCategory.domain_discovery:
        return CrawlResult(start_url=url)
    if category == AuditCategory.accessibility:
        return AccessibilityResult.empty(final_url=url)
    if category == AuditCategory.performance:
        return LighthouseResult.empty(final_url=url)
    if category == AuditCategory.dns:
        return DnsResult.empty(final_hostname=hostname)
    raise ValueError(f"No empty result for {category.value}")


class SiteAnalyzerService:
    """
    Probe orchestrator.

    Probes are injected; only the technology probe is mandatory. Optional
    probes that were not configured are reported as degraded when requested.
    """

    def __init__(
        self,
        repository: AnalysisRepository,
        technology_probe: BaseProbe,
        crawler: Optional[CrawlerService] = None,
        accessibility_probe: Optional[BaseProbe] = None,
        lighthouse_probe: Optional[BaseProbe] = None,
        dns_probe: Optional[BaseProbe] = None,
        browser_pool: Optional[BrowserSessionPool] = None,
        dns_failure_predicate: DnsFailurePredicate = is_dns_failure,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or get_settings()
        self.logger = logger or get_logger(__name__)
        self.repository = repository
        self.crawler = crawler or CrawlerService(settings=self.settings, logger=self.logger)
        self.browser_pool = browser_pool
        self.dns_failure_predicate = dns_failure_predicate
        self.probes: Dict[AuditCategory, Optional[BaseProbe]] = {
            AuditCategory.technology_detection: technology_probe,
            AuditCategory.accessibility: accessibility_probe,
            AuditCategory.performance: lighthouse_probe,
            AuditCategory.dns: dns_probe,
        }

    # ─────────────────────────────────────────────────────────────
    # Full analysis
    # ─────────────────────────────────────────────────────────────

    async def analyze(self, request: AnalyzeRequest, context: Optional[AnalysisContext] = None) -> CombinedResult:
        """
        Analyze one site.

        Raises:
            ValidationError: the URL is malformed
            CancellationError: the context was cancelled
            AnalysisTimeoutError: the deadline passed before any probe settled
            PersistenceError: the domain record could not be created
        """
        context = context or AnalysisContext.create()
        url = require_valid_url(request.url)
        hostname = extract_hostname(url)
        display_name = generate_display_name(url)
        context.raise_if_cancelled()

        if not request.force:
            cached = await self._find_fresh_result(hostname, context.organization_id)
            if cached is not None:
                self.logger.info(f"Serving cached analysis for {hostname}")
                return cached

        try:
            record = await self.repository.upsert_domain_record(hostname, display_name, context.organization_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to upsert domain record for {hostname}: {e}") from e

        self.logger.info(f"Starting analysis of {url} (domain record {record.id})")

        warnings: List[str] = []
        analysis_context = context.with_timeout(self.settings.ANALYSIS_TIMEOUT_SECONDS)
        categories = self._requested_categories(request)
        # Units are cut off by settle_all at the analysis deadline, not individually
        unit_context = context.without_deadline()

        tasks: Dict["asyncio.Task[UnitOutcome]", AuditCategory] = {}
        for category in categories:
            unit = self._run_unit(category, url, hostname, request, record, unit_context, warnings)
            tasks[asyncio.create_task(unit, name=f"{category.value}:{hostname}")] = category

        try:
            done, unsettled = await settle_all(tasks, analysis_context)
        except CancellationError:
            self.logger.info(f"Analysis of {url} cancelled")
            raise

        outcomes: Dict[AuditCategory, UnitOutcome] = {}
        for task in done:
            category = tasks[task]
            if task.cancelled():
                # Cancelled from inside the unit, not by the caller or the deadline
                context.raise_if_cancelled()
                self.logger.warning(f"{category.value} unit was cancelled for {url}")
                outcomes[category] = UnitOutcome(category, empty_result(category, url, hostname), "cancelled")
                continue
            error = task.exception()
            if error is not None:
                self.logger.error(f"{category.value} unit crashed for {url}: {error}")
                outcomes[category] = UnitOutcome(category, empty_result(category, url, hostname), str(error))
            else:
                outcomes[category] = task.result()

        if not outcomes:
            self.logger.error(f"Analysis of {url} timed out before any probe finished")
            raise AnalysisTimeoutError(self.settings.ANALYSIS_TIMEOUT_SECONDS)

        for task in unsettled:
            category = tasks[task]
            self.logger.warning(f"{category.value} did not finish before the analysis deadline for {url}")
            outcomes[category] = UnitOutcome(category, empty_result(category, url, hostname), "timed out")

        combined = self._combine(url, hostname, display_name, record, request, categories, outcomes)
        combined.warnings = warnings

        analyzed_at = utc_now()
        try:
            await self.repository.mark_analyzed(record.id, analyzed_at)
        except Exception as e:
            self.logger.error(f"Failed to update last analyzed time for {hostname}: {e}")
            warnings.append(f"Failed to update last analyzed time: {e}")
        combined.last_analyzed_at = analyzed_at

        await self._persist(
            AuditResultCreate(
                domain_record_id=record.id,
                url=url,
                category=AuditCategory.site_analysis,
                status=AuditStatus.degraded if combined.degraded else AuditStatus.completed,
                results=combined.model_dump(mode="json"),
                metadata={
                    "analysis_timestamp": analyzed_at.isoformat(),
                    "included_services": {
                        "accessibility": request.include_accessibility,
                        "lighthouse": request.include_lighthouse,
                        "dns": request.include_dns,
                        "max_pages": request.max_pages,
                    },
                    "degraded": [category.value for category in combined.degraded],
                    "errors": {
                        category.value: outcome.error
                        for category, outcome in outcomes.items() if outcome.degraded
                    },
                },
            ),
            warnings,
        )

        self.logger.info(
            f"Finished analysis of {url}: {len(combined.technologies)} technologies, "
            f"{combined.crawled_pages} pages, degraded={[c.value for c in combined.degraded]}"
        )
        return combined

    def _requested_categories(self, request: AnalyzeRequest) -> List[AuditCategory]:
        wanted = {
            AuditCategory.technology_detection: True,
            AuditCategory.domain_discovery: request.max_pages > 0,
            AuditCategory.accessibility: request.include_accessibility,
            AuditCategory.performance: request.include_lighthouse,
            AuditCategory.dns: request.include_dns,
        }
        return [category for category in DISPATCH_ORDER if wanted[category]]

    async def _find_fresh_result(self, hostname: str, organization_id: Optional[str]) -> Optional[CombinedResult]:
        try:
            record = await self.repository.find_domain_record(hostname, organization_id)
            if record is None:
                return None
            latest = await self.repository.find_latest_audit_result(record.id, AuditCategory.site_analysis)
        except Exception as e:
            self.logger.warning(f"Freshness check failed for {hostname}, analyzing anyway: {e}")
            return None

        if latest is None:
            return None

        age = utc_now() - ensure_utc(latest.created_at)
        if age >= timedelta(hours=self.settings.FRESHNESS_WINDOW_HOURS):
            return None

        try:
            return CombinedResult.model_validate(latest.results)
        except SchemaValidationError as e:
            self.logger.warning(f"Stored analysis for {hostname} is unreadable, analyzing anyway: {e}")
            return None

    async def _run_unit(
        self,
        category: AuditCategory,
        url: str,
        hostname: str,
        request: AnalyzeRequest,
        record: DomainRecordRead,
        context: AnalysisContext,
        warnings: List[str],
    ) -> UnitOutcome:
        """Run one unit to completion, persisting it when it succeeds. Only cancellation escapes."""
        try:
            if category == AuditCategory.domain_discovery:
                crawl_options = CrawlOptions(max_pages=request.max_pages, discovery_mode=True, include_metadata=True)
                result = await self.crawler.crawl(url, crawl_options, context)
            else:
                result = await self._run_probe(category, url, context)
        except CancellationError:
            raise
        except Exception as e:
            self.logger.warning(f"{category.value} degraded for {url}: {e}")
            outcome = UnitOutcome(category, empty_result(category, url, hostname), str(e) or type(e).__name__)
        else:
            outcome = UnitOutcome(category, result)
            # Failed units are only recorded on the site-analysis row
            await self._persist(self._audit_for(outcome, url, record), warnings)
        return outcome

    def _audit_for(self, outcome: UnitOutcome, url: str, record: DomainRecordRead) -> AuditResultCreate:
        metadata: Dict[str, Any] = {}

        if outcome.category == AuditCategory.domain_discovery:
            crawl: CrawlResult = outcome.result
            metadata.update(crawled_pages=crawl.pages_analyzed, crawl_errors=len(crawl.errors))
            return AuditResultCreate(
                domain_record_id=record.id,
                url=url,
                category=outcome.category,
                score=len(crawl.discovered_domains),
                results=[domain.model_dump(mode="json") for domain in crawl.discovered_domains],
                metadata=metadata,
            )

        if isinstance(outcome.result, TechnologyResult):
            metadata.update(is_wordpress=outcome.result.is_wordpress, is_hubspot=outcome.result.is_hubspot)

        return AuditResultCreate(
            domain_record_id=record.id,
            url=url,
            category=outcome.category,
            score=result_score(outcome.result),
            results=dump_result(outcome.result),
            metadata=metadata,
        )

    async def _persist(self, audit: AuditResultCreate, warnings: List[str]) -> None:
        try:
            await self.repository.create_audit_result(audit)
        except Exception as e:
            self.logger.error(f"Failed to save {audit.category.value} result for {audit.url}: {e}")
            warnings.append(f"Failed to save {audit.category.value} result: {e}")

    def _combine(
        self,
        url: str,
        hostname: str,
        display_name: str,
        record: DomainRecordRead,
        request: AnalyzeRequest,
        categories: List[AuditCategory],
        outcomes: Dict[AuditCategory, UnitOutcome],
    ) -> CombinedResult:
        def result_for(category: AuditCategory) -> Any:
            outcome = outcomes.get(category)
            return outcome.result if outcome else empty_result(category, url, hostname)

        technology: TechnologyResult = result_for(AuditCategory.technology_detection)
        combined = CombinedResult(
            url=url,
            domain=hostname,
            display_name=display_name,
            domain_record_id=record.id,
            last_analyzed_at=record.last_analyzed_at,
            technologies=technology.technologies,
            is_wordpress=technology.is_wordpress,
            is_hubspot=technology.is_hubspot,
            degraded=[
                category for category in categories
                if category not in outcomes or outcomes[category].degraded
            ],
        )

        if request.max_pages > 0:
            crawl: CrawlResult = result_for(AuditCategory.domain_discovery)
            combined.crawled_pages = crawl.pages_analyzed
            combined.discovered_domains = [domain.domain for domain in crawl.discovered_domains]
        if request.include_accessibility:
            combined.accessibility = result_for(AuditCategory.accessibility)
        if request.include_lighthouse:
            combined.lighthouse = result_for(AuditCategory.performance)
        if request.include_dns:
            combined.dns = result_for(AuditCategory.dns)

        return combined

    # ─────────────────────────────────────────────────────────────
    # Probe execution
    # ─────────────────────────────────────────────────────────────

    async def _run_probe(self, category: AuditCategory, url: str, context: AnalysisContext) -> Any:
        probe = self.probes.get(category)
        if probe is None:
            raise ProbeError(category.value, url, "no probe configured")

        result, final_url = await run_with_fallback(
            lambda target: self._attempt_probe(probe, target, context),
            url,
            category,
            is_dns_failure=self.dns_failure_predicate,
            logger=self.logger,
        )

        if isinstance(result, DnsResult):
            result.final_hostname = extract_hostname(final_url)
        elif hasattr(result, "final_url"):
            result.final_url = final_url
        return result

    async def _attempt_probe(self, probe: BaseProbe, url: str, context: AnalysisContext) -> Any:
        """One probe run. Every failure except cancellation surfaces as ProbeError."""
        category = probe.category.value
        timeout = probe.timeout_seconds or self.settings.PROBE_TIMEOUT_SECONDS
        session = None
        try:
            if probe.requires_browser:
                session = await self._lease_session(category, url, context)
            return await with_cancellation(probe.run(url, session), context, timeout=timeout)
        except (CancellationError, ProbeError):
            raise
        except OperationTimeoutError as e:
            raise ProbeError(category, url, str(e), cause=e) from e
        except Exception as e:
            raise ProbeError(category, url, str(e) or type(e).__name__, cause=e) from e
        finally:
            if session is not None:
                await self.browser_pool.release(session)

    async def _lease_session(self, category: str, url: str, context: AnalysisContext) -> Any:
        if self.browser_pool is None:
            raise ProbeError(category, url, "no browser session pool configured")

        acquiring = asyncio.ensure_future(self.browser_pool.acquire())
        try:
            return await with_cancellation(
                acquiring, context, timeout=self.settings.BROWSER_ACQUIRE_TIMEOUT_SECONDS
            )
        except BaseException as e:
            # A session handed out just as the wait gave up goes straight back
            if acquiring.done() and not acquiring.cancelled() and acquiring.exception() is None:
                await self.browser_pool.release(acquiring.result())
            if isinstance(e, OperationTimeoutError):
                raise ProbeError(category, url, "timed out waiting for a browser session", cause=e) from e
            raise

    # ─────────────────────────────────────────────────────────────
    # Crawl
    # ─────────────────────────────────────────────────────────────

    async def crawl_site(self, request: CrawlRequest, context: Optional[AnalysisContext] = None) -> CrawlSiteResult:
        """
        Crawl a site for discovery, then detect its technologies and store
        both. Only cancellation escapes; other failures are reported on the
        result.
        """
        context = context or AnalysisContext.create()
        self.logger.info(f"Starting crawl of {request.url}")

        options = CrawlOptions(
            max_pages=request.max_pages,
            follow_external_links=request.follow_external_links,
            discovery_mode=request.discovery_mode,
            include_metadata=True,
        )
        try:
            crawl = await self.crawler.crawl(request.url, options, context)
        except CancellationError:
            raise
        except Exception as e:
            self.logger.error(f"Crawl failed for {request.url}: {e}")
            return CrawlSiteResult(url=request.url, success=False, error=str(e) or "Crawl failed")

        technologies = []
        try:
            technology = await self._run_probe(AuditCategory.technology_detection, crawl.start_url, context)
            technologies = technology.technologies

            hostname = extract_hostname(crawl.start_url)
            record = await self.repository.upsert_domain_record(
                hostname, generate_display_name(crawl.start_url), context.organization_id
            )
            await self.repository.create_audit_result(
                AuditResultCreate(
                    domain_record_id=record.id,
                    url=crawl.start_url,
                    category=AuditCategory.technology_detection,
                    results=dump_result(technology),
                    metadata={"is_wordpress": technology.is_wordpress, "is_hubspot": technology.is_hubspot},
                )
            )
            if crawl.discovered_domains:
                await self.repository.create_audit_result(
                    AuditResultCreate(
                        domain_record_id=record.id,
                        url=crawl.start_url,
                        category=AuditCategory.domain_discovery,
                        score=len(crawl.discovered_domains),
                        results=[domain.model_dump(mode="json") for domain in crawl.discovered_domains],
                        metadata={"crawled_pages": crawl.pages_analyzed},
                    )
                )
        except CancellationError:
            raise
        except Exception as e:
            self.logger.error(f"Technology detection failed during crawl of {request.url}: {e}")

        return CrawlSiteResult(
            url=request.url,
            success=True,
            pages_analyzed=crawl.pages_analyzed,
            discovered_domains=crawl.discovered_domains,
            technologies=technologies,
            duration_ms=crawl.duration_ms,
        )
