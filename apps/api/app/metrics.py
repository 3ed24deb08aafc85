from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

leads_assignments_total = Counter(
    "leads_assignments_total",
    "Total assignment attempts by outcome",
    ["outcome"],
)

leads_assignment_cursor_conflicts_total = Counter(
    "leads_assignment_cursor_conflicts_total",
    "Total round-robin cursor compare-and-swap conflicts",
    ["pool_key"],
)

leads_sweep_runs_total = Counter(
    "leads_sweep_runs_total",
    "Total sweep runs by status",
    ["sweep", "status"],
)

leads_sweep_duration_seconds = Histogram(
    "leads_sweep_duration_seconds",
    "Sweep duration in seconds",
    ["sweep"],
)

leads_sweep_reassigned_total = Counter(
    "leads_sweep_reassigned_total",
    "Total leads reassigned by sweeps",
    ["sweep"],
)

leads_sweep_skipped_total = Counter(
    "leads_sweep_skipped_total",
    "Total leads skipped by sweeps",
    ["sweep"],
)

leads_reminders_sent_total = Counter(
    "leads_reminders_sent_total",
    "Total reminders dispatched by kind",
    ["kind"],
)

leads_policy_invalid_values_total = Counter(
    "leads_policy_invalid_values_total",
    "Total malformed policy values encountered",
    ["policy_key"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_assignment(outcome: str) -> None:
    leads_assignments_total.labels(outcome=outcome).inc()


def observe_cursor_conflict(pool_key: str) -> None:
    leads_assignment_cursor_conflicts_total.labels(pool_key=pool_key).inc()


def observe_sweep(sweep: str, status: str, duration: float, reassigned: int = 0, skipped: int = 0) -> None:
    leads_sweep_runs_total.labels(sweep=sweep, status=status).inc()
    leads_sweep_duration_seconds.labels(sweep=sweep).observe(duration)
    if reassigned > 0:
        leads_sweep_reassigned_total.labels(sweep=sweep).inc(reassigned)
    if skipped > 0:
        leads_sweep_skipped_total.labels(sweep=sweep).inc(skipped)


def observe_reminder_sent(kind: str) -> None:
    leads_reminders_sent_total.labels(kind=kind).inc()


def observe_policy_invalid_value(policy_key: str) -> None:
    leads_policy_invalid_values_total.labels(policy_key=policy_key).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
