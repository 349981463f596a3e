from site_analyzer.features.analysis.models.audit_result import AuditCategory, AuditResult, AuditStatus
from site_analyzer.features.analysis.models.domain_record import DomainRecord

__all__ = ["AuditCategory", "AuditResult", "AuditStatus", "DomainRecord"]
