from app.leads.scheduler.models import SweepLease
from app.leads.scheduler.runner import SweepRun, SweepRunner, sweep_runner

__all__ = ["SweepLease", "SweepRun", "SweepRunner", "sweep_runner"]
