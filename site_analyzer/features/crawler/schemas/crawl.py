"""
Crawler Schemas

Options and result models produced by the breadth-first crawler.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class CrawlOptions(BaseModel):
    """Per-crawl options. `timeout` is the per-page fetch timeout in seconds."""
    max_pages: int = Field(default=10, ge=0)
    follow_external_links: bool = False
    discovery_mode: bool = False
    include_metadata: bool = True
    timeout: Optional[float] = None
    user_agent: Optional[str] = None


class PageHeadings(BaseModel):
    h1: List[str] = Field(default_factory=list)
    h2: List[str] = Field(default_factory=list)
    h3: List[str] = Field(default_factory=list)


class PageLinks(BaseModel):
    internal: List[str] = Field(default_factory=list)
    external: List[str] = Field(default_factory=list)


class PageData(BaseModel):
    """One crawled page."""
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    headings: Optional[PageHeadings] = None
    links: PageLinks = Field(default_factory=PageLinks)
    images: List[str] = Field(default_factory=list)
    scripts: List[str] = Field(default_factory=list)
    stylesheets: List[str] = Field(default_factory=list)
    meta: Dict[str, str] = Field(default_factory=dict)
    status_code: Optional[int] = None
    content_type: Optional[str] = None


class DiscoveredDomain(BaseModel):
    """A unique off-site hostname seen while crawling."""
    domain: str
    source_url: str
    discovered_at: datetime
    is_internal: bool = False


class CrawlError(BaseModel):
    url: str
    error: str


class CrawlResult(BaseModel):
    start_url: str
    pages_analyzed: int = 0
    pages: List[PageData] = Field(default_factory=list)
    discovered_domains: List[DiscoveredDomain] = Field(default_factory=list)
    errors: List[CrawlError] = Field(default_factory=list)
    duration_ms: int = 0
