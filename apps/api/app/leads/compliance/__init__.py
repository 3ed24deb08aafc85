from app.leads.compliance.models import DndEntry
from app.leads.compliance.service import ComplianceFilter, compliance_filter, normalize_phone

__all__ = ["DndEntry", "ComplianceFilter", "compliance_filter", "normalize_phone"]
