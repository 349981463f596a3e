"""
Analysis Schemas

Request models, combined/bulk results and the repository transfer objects.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from site_analyzer.features.analysis.models.audit_result import AuditCategory, AuditStatus
from site_analyzer.features.analysis.schemas.probes import (
    AccessibilityResult,
    DnsResult,
    LighthouseResult,
    Technology,
)
from site_analyzer.features.crawler.schemas.crawl import DiscoveredDomain


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Some drivers (sqlite) hand back naive datetimes; they are stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Requests ─────────────────────────────────


class AnalyzeRequest(BaseModel):
    url: str
    force: bool = False
    include_accessibility: bool = False
    include_lighthouse: bool = False
    include_dns: bool = False
    max_pages: int = Field(default=10, ge=0)


class BulkAnalyzeRequest(BaseModel):
    urls: List[str]
    force: bool = False
    include_accessibility: bool = False
    include_lighthouse: bool = False
    include_dns: bool = False
    max_pages: int = Field(default=10, ge=0)

    def item(self, url: str) -> AnalyzeRequest:
        return AnalyzeRequest(
            url=url,
            force=self.force,
            include_accessibility=self.include_accessibility,
            include_lighthouse=self.include_lighthouse,
            include_dns=self.include_dns,
            max_pages=self.max_pages,
        )


class CrawlRequest(BaseModel):
    url: str
    max_pages: int = Field(default=100, ge=0)
    follow_external_links: bool = False
    discovery_mode: bool = True


class BulkCrawlRequest(BaseModel):
    urls: List[str]
    max_pages: int = Field(default=100, ge=0)
    follow_external_links: bool = False

    def item(self, url: str) -> CrawlRequest:
        return CrawlRequest(
            url=url,
            max_pages=self.max_pages,
            follow_external_links=self.follow_external_links,
            discovery_mode=True,
        )


# ── Results ──────────────────────────────────


class CombinedResult(BaseModel):
    """
    Merged output of one analysis.

    Always structurally complete: a probe that failed or never settled
    contributes its empty shape and its category is listed in `degraded`.
    """
    url: str
    domain: str
    display_name: str
    domain_record_id: Optional[str] = None
    last_analyzed_at: Optional[datetime] = None
    technologies: List[Technology] = Field(default_factory=list)
    is_wordpress: bool = False
    is_hubspot: bool = False
    crawled_pages: int = 0
    discovered_domains: List[str] = Field(default_factory=list)
    accessibility: Optional[AccessibilityResult] = None
    lighthouse: Optional[LighthouseResult] = None
    dns: Optional[DnsResult] = None
    degraded: List[AuditCategory] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class BulkItemResult(BaseModel):
    url: str
    success: bool
    error: Optional[str] = None
    data: Optional[CombinedResult] = None


class BulkResult(BaseModel):
    success: bool = True
    message: str
    processed: int
    failed: int
    results: List[BulkItemResult] = Field(default_factory=list)


class CrawlSiteResult(BaseModel):
    url: str
    success: bool
    pages_analyzed: int = 0
    discovered_domains: List[DiscoveredDomain] = Field(default_factory=list)
    technologies: List[Technology] = Field(default_factory=list)
    duration_ms: Optional[int] = None
    error: Optional[str] = None


class BulkCrawlResult(BaseModel):
    success: bool = True
    message: str
    processed: int
    failed: int
    results: List[CrawlSiteResult] = Field(default_factory=list)


# ── Repository transfer objects ──────────────


class DomainRecordRead(BaseModel):
    id: str
    organization_id: Optional[str] = None
    domain: str
    display_name: Optional[str] = None
    last_analyzed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("last_analyzed_at", "created_at", "updated_at")
    @classmethod
    def coerce_utc(cls, value):
        return ensure_utc(value)

    class Config:
        from_attributes = True


class AuditResultCreate(BaseModel):
    domain_record_id: str
    url: str
    category: AuditCategory
    status: AuditStatus = AuditStatus.completed
    score: Optional[float] = None
    results: Any = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AuditResultRead(BaseModel):
    id: str
    domain_record_id: str
    url: str
    category: AuditCategory
    status: AuditStatus
    score: Optional[float] = None
    results: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def coerce_utc(cls, value):
        return ensure_utc(value)
