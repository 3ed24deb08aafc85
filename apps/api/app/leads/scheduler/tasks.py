from __future__ import annotations

from typing import Any

from app.core.celery_app import celery_app
from app.core.database import SessionLocal
from app.leads.models import utcnow
from app.leads.scheduler.runner import sweep_runner


@celery_app.task(name="app.leads.scheduler.tick")
def tick() -> list[str]:
    session = SessionLocal()
    try:
        due = sweep_runner.due_sweeps(session, now=utcnow())
    finally:
        session.close()
    for name in due:
        run_sweep.delay(name)
    return due


@celery_app.task(name="app.leads.scheduler.run_sweep")
def run_sweep(sweep_name: str) -> dict[str, Any]:
    session = SessionLocal()
    try:
        return sweep_runner.run_sweep(session, sweep_name).as_dict()
    finally:
        session.close()
