from app.leads.rotation.sweeps import (
    DistributionSweep,
    DndSweep,
    DumpToColdCallSweep,
    FreshLeadSweep,
    NoActivitySweep,
    StatusRotationSweep,
    Sweep,
    SweepResult,
)

__all__ = [
    "DistributionSweep",
    "DndSweep",
    "DumpToColdCallSweep",
    "FreshLeadSweep",
    "NoActivitySweep",
    "StatusRotationSweep",
    "Sweep",
    "SweepResult",
]
