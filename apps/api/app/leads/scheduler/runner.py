from __future__ import annotations

import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.context import reset_correlation_id, reset_sweep_name, set_correlation_id, set_sweep_name
from app.core.config import get_settings
from app.leads.assignment.engine import AssignmentEngine
from app.leads.errors import UnknownSweep
from app.leads.models import as_utc, utcnow
from app.leads.policy.service import PolicySnapshot, PolicyStore
from app.leads.reminders.service import ReminderKind, ReminderScheduler, ReminderSweep
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
from app.leads.scheduler.models import SweepLease
from app.metrics import observe_sweep
from app.otel import set_span_attributes

logger = logging.getLogger("app.leads.scheduler")
tracer = trace.get_tracer("app.leads.scheduler")

STATUS_RUNNING = "Running"
STATUS_SUCCEEDED = "Succeeded"
STATUS_FAILED = "Failed"
STATUS_SKIPPED = "Skipped"
STATUS_OUTSIDE_HOURS = "OutsideHours"


def _default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass(frozen=True, slots=True)
class SweepRun:
    sweep: str
    status: str
    correlation_id: str
    result: SweepResult = field(default_factory=SweepResult)
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "sweep": self.sweep,
            "status": self.status,
            "correlation_id": self.correlation_id,
            "reassigned": self.result.reassigned,
            "skipped": self.result.skipped,
            "updated": self.result.updated,
            "notified": self.result.notified,
            "error": self.error,
        }


@dataclass(slots=True)
class SweepRunner:
    """Decides which sweeps are due and runs each one under a single-flight lease."""

    policy_store: PolicyStore = field(default_factory=PolicyStore)
    engine: AssignmentEngine = field(default_factory=AssignmentEngine)
    reminders: ReminderScheduler = field(default_factory=ReminderScheduler)
    holder: str = field(default_factory=_default_holder)

    def build_sweeps(self, snapshot: PolicySnapshot) -> dict[str, Sweep]:
        sweeps: list[Sweep] = [
            DistributionSweep(engine=self.engine),
            NoActivitySweep(engine=self.engine),
            FreshLeadSweep(),
            DumpToColdCallSweep(),
            DndSweep(),
            ReminderSweep(kind=ReminderKind.CALL, scheduler=self.reminders),
            ReminderSweep(kind=ReminderKind.MEETING, scheduler=self.reminders),
        ]
        sweeps.extend(StatusRotationSweep(rule=rule, engine=self.engine) for rule in snapshot.status_rules)
        return {sweep.name: sweep for sweep in sweeps}

    def due_sweeps(self, session: Session, *, now: datetime, snapshot: PolicySnapshot | None = None) -> list[str]:
        snapshot = snapshot or self.policy_store.load_snapshot(session)
        leases = {lease.sweep_name: lease for lease in session.scalars(select(SweepLease))}
        due: list[str] = []
        for name, sweep in self.build_sweeps(snapshot).items():
            if not sweep.is_enabled(snapshot):
                continue
            lease = leases.get(name)
            last_started = as_utc(lease.last_started_at) if lease is not None else None
            if last_started is None or now - last_started >= timedelta(minutes=sweep.interval_minutes(snapshot)):
                due.append(name)
        return due

    def list_sweeps(self, session: Session, *, snapshot: PolicySnapshot | None = None) -> list[dict[str, Any]]:
        snapshot = snapshot or self.policy_store.load_snapshot(session)
        leases = {lease.sweep_name: lease for lease in session.scalars(select(SweepLease))}
        rows: list[dict[str, Any]] = []
        for name, sweep in self.build_sweeps(snapshot).items():
            lease = leases.get(name)
            rows.append(
                {
                    "name": name,
                    "enabled": sweep.is_enabled(snapshot),
                    "interval_minutes": sweep.interval_minutes(snapshot),
                    "office_hours_only": sweep.office_hours_only,
                    "locked_until": lease.locked_until if lease is not None else None,
                    "last_started_at": lease.last_started_at if lease is not None else None,
                    "last_finished_at": lease.last_finished_at if lease is not None else None,
                    "last_succeeded_at": lease.last_succeeded_at if lease is not None else None,
                    "last_status": lease.last_status if lease is not None else None,
                    "last_error": lease.last_error if lease is not None else None,
                    "last_reassigned": lease.last_reassigned if lease is not None else 0,
                    "last_skipped": lease.last_skipped if lease is not None else 0,
                }
            )
        return rows

    def run_sweep(
        self,
        session: Session,
        name: str,
        *,
        now: datetime | None = None,
        snapshot: PolicySnapshot | None = None,
    ) -> SweepRun:
        snapshot = snapshot or self.policy_store.load_snapshot(session)
        sweep = self.build_sweeps(snapshot).get(name)
        if sweep is None:
            raise UnknownSweep(name)
        now = now or utcnow()

        correlation_id = f"sweep:{name}:{uuid.uuid4()}"
        token = set_correlation_id(correlation_id)
        sweep_token = set_sweep_name(name)
        started = time.perf_counter()
        final_status = STATUS_FAILED
        result = SweepResult()

        try:
            with tracer.start_as_current_span("leads.sweep.run") as span:
                set_span_attributes(span, sweep=name, correlation_id=correlation_id)

                if sweep.office_hours_only and not snapshot.is_working_time(now):
                    final_status = STATUS_OUTSIDE_HOURS
                    set_span_attributes(span, status=final_status)
                    logger.info("sweep.skipped", extra={"status": final_status, "reason": "outside_hours"})
                    return SweepRun(sweep=name, status=final_status, correlation_id=correlation_id)

                lease = self.acquire_lease(session, name, now=now)
                if lease is None:
                    final_status = STATUS_SKIPPED
                    set_span_attributes(span, status=final_status)
                    logger.info("sweep.skipped", extra={"status": final_status, "reason": "lease_held"})
                    return SweepRun(sweep=name, status=final_status, correlation_id=correlation_id)
                last_succeeded_at = as_utc(lease.last_succeeded_at)

                logger.info("sweep.started", extra={"status": STATUS_RUNNING, "duration_ms": 0.0})
                try:
                    result = sweep.run(session, now=now, snapshot=snapshot, last_succeeded_at=last_succeeded_at)
                except Exception as exc:
                    session.rollback()
                    self.release_lease(session, name, now=now, status=STATUS_FAILED, error=str(exc)[:2000])
                    span.record_exception(exc)
                    span.set_status(Status(StatusCode.ERROR, str(exc)))
                    logger.exception(
                        "sweep.failed",
                        extra={
                            "status": STATUS_FAILED,
                            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                            "error": str(exc)[:500],
                        },
                    )
                    final_status = STATUS_FAILED
                    return SweepRun(sweep=name, status=final_status, correlation_id=correlation_id, error=str(exc))

                self.release_lease(session, name, now=now, status=STATUS_SUCCEEDED, result=result)
                final_status = STATUS_SUCCEEDED
                set_span_attributes(span, status=final_status, reassigned=result.reassigned, skipped=result.skipped)
                logger.info(
                    "sweep.finished",
                    extra={
                        "status": final_status,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "reassigned": result.reassigned,
                        "skipped": result.skipped,
                        "updated": result.updated,
                        "notified": result.notified,
                    },
                )
                return SweepRun(sweep=name, status=final_status, correlation_id=correlation_id, result=result)
        finally:
            observe_sweep(
                name,
                final_status,
                time.perf_counter() - started,
                reassigned=result.reassigned,
                skipped=result.skipped,
            )
            reset_sweep_name(sweep_token)
            reset_correlation_id(token)

    def acquire_lease(self, session: Session, name: str, *, now: datetime) -> SweepLease | None:
        locked_until = now + timedelta(seconds=get_settings().sweep_lease_ttl_seconds)
        claimed = session.execute(
            update(SweepLease)
            .where(
                SweepLease.sweep_name == name,
                or_(SweepLease.locked_until.is_(None), SweepLease.locked_until <= now),
            )
            .values(
                holder=self.holder,
                locked_until=locked_until,
                last_started_at=now,
                last_status=STATUS_RUNNING,
                last_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount:
            session.commit()
            return session.get(SweepLease, name, populate_existing=True)

        if session.get(SweepLease, name, populate_existing=True) is not None:
            session.rollback()
            return None

        lease = SweepLease(
            sweep_name=name,
            holder=self.holder,
            locked_until=locked_until,
            last_started_at=now,
            last_status=STATUS_RUNNING,
        )
        session.add(lease)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            return None
        return lease

    def release_lease(
        self,
        session: Session,
        name: str,
        *,
        now: datetime,
        status: str,
        result: SweepResult | None = None,
        error: str | None = None,
    ) -> None:
        lease = session.get(SweepLease, name, populate_existing=True)
        if lease is None:
            return
        lease.holder = None
        lease.locked_until = None
        lease.last_finished_at = utcnow()
        lease.last_status = status
        lease.last_error = error
        if result is not None:
            lease.last_reassigned = result.reassigned
            lease.last_skipped = result.skipped
            lease.last_updated = result.updated
            lease.last_notified = result.notified
        if status == STATUS_SUCCEEDED:
            # Start time, so work that lands mid-run is picked up next time.
            lease.last_succeeded_at = now
        session.commit()


sweep_runner = SweepRunner()
