from sqlalchemy import Column, DateTime, Index, String, UniqueConstraint

from site_analyzer.platform.db.base import BaseModel


class DomainRecord(BaseModel):
    """
    One analyzed hostname within an organization.

    Created on first analysis and updated on every later one; the probe
    outputs themselves live in AuditResult rows.
    """
    __tablename__ = "domain_records"

    organization_id = Column(String, nullable=True, index=True)
    domain = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    last_analyzed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "domain", name="uq_domain_record_org_domain"),
        Index("ix_domain_records_domain_last_analyzed", "domain", "last_analyzed_at"),
    )
