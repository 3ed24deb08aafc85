from app.leads.commission.models import CommissionSlab
from app.leads.commission.seed import seed_commission_slabs
from app.leads.commission.service import CommissionResolver, SlabRange, commission_resolver, validate_coverage

__all__ = [
    "CommissionSlab",
    "seed_commission_slabs",
    "CommissionResolver",
    "SlabRange",
    "commission_resolver",
    "validate_coverage",
]
