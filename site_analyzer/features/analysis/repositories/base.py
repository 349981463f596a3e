from datetime import datetime
from typing import Optional, Protocol

from site_analyzer.features.analysis.models.audit_result import AuditCategory
from site_analyzer.features.analysis.schemas.analysis import (
    AuditResultCreate,
    AuditResultRead,
    DomainRecordRead,
)


class AnalysisRepository(Protocol):
    """
    Persistence contract for domain records and audit results.

    Implementations raise PersistenceError for any storage failure and must
    be safe to call from concurrent tasks.
    """

    async def find_domain_record(self, domain: str, organization_id: Optional[str]) -> Optional[DomainRecordRead]: ...

    async def upsert_domain_record(
        self, domain: str, display_name: str, organization_id: Optional[str]
    ) -> DomainRecordRead: ...

    async def mark_analyzed(self, domain_record_id: str, analyzed_at: datetime) -> None: ...

    async def create_audit_result(self, audit: AuditResultCreate) -> AuditResultRead: ...

    async def find_latest_audit_result(
        self, domain_record_id: str, category: AuditCategory
    ) -> Optional[AuditResultRead]: ...
