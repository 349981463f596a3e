"""
Probe Result Schemas

One result type per probe category. Every type has an explicit empty()
variant, which is what a failed or timed-out probe contributes to the
combined analysis.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from site_analyzer.platform.db.base import utc_now

IMPACT_WEIGHTS = {"critical": 10, "serious": 5, "moderate": 2, "minor": 1}


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class TechnologyCategory(BaseModel):
    id: int = 0
    slug: str = ""
    name: str

    @model_validator(mode="after")
    def fill_slug(self):
        if not self.slug:
            self.slug = slugify(self.name)
        return self


class Technology(BaseModel):
    slug: str = ""
    name: str
    confidence: int = 100
    version: Optional[str] = None
    website: Optional[str] = None
    categories: List[TechnologyCategory] = Field(default_factory=list)

    @model_validator(mode="after")
    def fill_slug(self):
        if not self.slug:
            self.slug = slugify(self.name)
        return self


class TechnologyResult(BaseModel):
    technologies: List[Technology] = Field(default_factory=list)
    is_wordpress: bool = False
    is_hubspot: bool = False
    final_url: Optional[str] = None

    @classmethod
    def from_technologies(cls, technologies: List[Technology], final_url: Optional[str] = None) -> "TechnologyResult":
        names = [tech.name.lower() for tech in technologies]
        return cls(
            technologies=technologies,
            is_wordpress=any("wordpress" in name for name in names),
            is_hubspot=any("hubspot" in name for name in names),
            final_url=final_url,
        )

    @classmethod
    def empty(cls, final_url: Optional[str] = None) -> "TechnologyResult":
        return cls(final_url=final_url)


class AccessibilityViolation(BaseModel):
    id: str
    impact: Optional[str] = None
    description: str = ""
    help: str = ""
    help_url: Optional[str] = None
    nodes: int = 0  # Number of affected elements
    tags: List[str] = Field(default_factory=list)


class AccessibilityResult(BaseModel):
    score: float = 0
    total_violations: int = 0
    critical_violations: int = 0
    serious_violations: int = 0
    moderate_violations: int = 0
    minor_violations: int = 0
    violations: List[AccessibilityViolation] = Field(default_factory=list)
    analyzed_at: datetime = Field(default_factory=utc_now)
    final_url: Optional[str] = None

    @classmethod
    def from_violations(
        cls, violations: List[AccessibilityViolation], final_url: Optional[str] = None
    ) -> "AccessibilityResult":
        """
        Count violations per impact level by affected element and score as
        100 minus the weighted count, floored at zero.
        """
        counts = {impact: 0 for impact in IMPACT_WEIGHTS}
        for violation in violations:
            if violation.impact in counts:
                counts[violation.impact] += violation.nodes

        penalty = sum(IMPACT_WEIGHTS[impact] * count for impact, count in counts.items())
        return cls(
            score=max(0, 100 - penalty),
            total_violations=len(violations),
            critical_violations=counts["critical"],
            serious_violations=counts["serious"],
            moderate_violations=counts["moderate"],
            minor_violations=counts["minor"],
            violations=violations,
            final_url=final_url,
        )

    @classmethod
    def empty(cls, final_url: Optional[str] = None) -> "AccessibilityResult":
        return cls(final_url=final_url)


class LighthouseMetrics(BaseModel):
    first_contentful_paint: float = 0
    speed_index: float = 0
    largest_contentful_paint: float = 0
    time_to_interactive: float = 0
    total_blocking_time: float = 0
    cumulative_layout_shift: float = 0
    first_meaningful_paint: Optional[float] = None
    time_to_first_byte: Optional[float] = None


class LighthouseResult(BaseModel):
    performance_score: float = 0
    accessibility_score: float = 0
    best_practices_score: float = 0
    seo_score: float = 0
    pwa_score: float = 0
    metrics: LighthouseMetrics = Field(default_factory=LighthouseMetrics)
    analyzed_at: datetime = Field(default_factory=utc_now)
    final_url: Optional[str] = None

    @classmethod
    def empty(cls, final_url: Optional[str] = None) -> "LighthouseResult":
        return cls(final_url=final_url)


class MxRecord(BaseModel):
    priority: int
    exchange: str


class SoaRecord(BaseModel):
    nsname: str
    hostmaster: str
    serial: int
    refresh: int
    retry: int
    expire: int
    minttl: int


class DnsResult(BaseModel):
    a: List[str] = Field(default_factory=list)
    aaaa: List[str] = Field(default_factory=list)
    mx: List[MxRecord] = Field(default_factory=list)
    txt: List[str] = Field(default_factory=list)
    ns: List[str] = Field(default_factory=list)
    cname: Optional[str] = None
    soa: Optional[SoaRecord] = None
    final_hostname: Optional[str] = None

    def has_records(self) -> bool:
        """TXT and SOA alone do not prove the hostname resolves."""
        return bool(self.a or self.aaaa or self.cname or self.mx or self.ns)

    @classmethod
    def empty(cls, final_hostname: Optional[str] = None) -> "DnsResult":
        return cls(final_hostname=final_hostname)


def result_score(result: Any) -> Optional[float]:
    """Headline score stored alongside an audit row, when the result has one."""
    if isinstance(result, AccessibilityResult):
        return result.score
    if isinstance(result, LighthouseResult):
        return result.performance_score
    return None


def dump_result(result: Any) -> Dict[str, Any]:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return result

