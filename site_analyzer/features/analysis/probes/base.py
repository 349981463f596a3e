from abc import ABC, abstractmethod
from typing import Any, Optional

from site_analyzer.features.analysis.models.audit_result import AuditCategory


class BaseProbe(ABC):
    """
    Contract for one network-bound analysis of a URL.

    Concrete engines (technology fingerprinting, accessibility rules, the
    performance auditor, DNS lookups) live outside this package and plug in
    by subclassing. A probe signals failure by raising; the orchestrator
    decides whether to retry against the alternate hostname or to fall back
    to the category's empty result.
    """

    category: AuditCategory
    # Browser-backed probes receive a session leased from the BrowserSessionPool
    requires_browser: bool = False
    # None means the orchestrator's PROBE_TIMEOUT_SECONDS applies
    timeout_seconds: Optional[float] = None

    @property
    def name(self) -> str:
        return self.category.value

    @abstractmethod
    async def run(self, url: str, session: Optional[Any] = None) -> Any:
        """
        Probe `url` and return the category's typed result
        (TechnologyResult, AccessibilityResult, LighthouseResult or DnsResult).

        DNS probes receive a URL too; they look up its hostname.
        """
