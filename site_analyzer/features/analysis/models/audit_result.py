import enum

from sqlalchemy import JSON, Column, Enum, Float, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from site_analyzer.platform.db.base import BaseModel


class AuditCategory(str, enum.Enum):
    technology_detection = "technology-detection"
    domain_discovery = "domain-discovery"
    accessibility = "accessibility"
    performance = "performance"
    dns = "dns"
    site_analysis = "site-analysis"


class AuditStatus(str, enum.Enum):
    completed = "completed"
    degraded = "degraded"  # Probe failed, empty result stored
    failed = "failed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class AuditResult(BaseModel):
    """
    Append-only record of one probe execution.

    The current state of a category is its most recent row.
    """
    __tablename__ = "audit_results"

    domain_record_id = Column(
        String, ForeignKey("domain_records.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url = Column(String, nullable=False)
    category = Column(
        Enum(AuditCategory, values_callable=_enum_values, native_enum=False, length=32),
        nullable=False,
    )
    status = Column(
        Enum(AuditStatus, values_callable=_enum_values, native_enum=False, length=16),
        default=AuditStatus.completed,
        nullable=False,
    )
    score = Column(Float, nullable=True)  # 0-100
    results = Column(JSON, nullable=False, default=dict)
    audit_metadata = Column("metadata", JSON, nullable=False, default=dict)

    domain_record = relationship("DomainRecord", foreign_keys=[domain_record_id])

    __table_args__ = (
        Index("ix_audit_results_record_category_created", "domain_record_id", "category", "created_at"),
    )
