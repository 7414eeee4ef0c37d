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

workpackage_timeline_cascades_total = Counter(
    "workpackage_timeline_cascades_total",
    "Total forward timeline cascades by trigger",
    ["trigger"],
)

workpackage_timeline_shifted_phases = Histogram(
    "workpackage_timeline_shifted_phases",
    "Number of later phases moved by one cascade",
    buckets=(0, 1, 2, 3, 5, 8, 13, 21, 34),
)

workpackage_timeline_conflicts_total = Counter(
    "workpackage_timeline_conflicts_total",
    "Timeline writes rejected because a concurrent edit committed first",
)

workpackage_phase_status_transitions_total = Counter(
    "workpackage_phase_status_transitions_total",
    "Phase status transitions by target status",
    ["status"],
)

workpackage_duration_recomputes_total = Counter(
    "workpackage_duration_recomputes_total",
    "Phase duration recomputes by scope",
    ["scope"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        for attr in ("path_format", "path"):
            template = getattr(route, attr, None)
            if isinstance(template, str) and template:
                return _PATH_PARAM_RE.sub("{id}", template)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_timeline_cascade(trigger: str, shifted_count: int) -> None:
    workpackage_timeline_cascades_total.labels(trigger=trigger).inc()
    workpackage_timeline_shifted_phases.observe(shifted_count)


def observe_timeline_conflict() -> None:
    workpackage_timeline_conflicts_total.inc()


def observe_phase_status_transition(status: str) -> None:
    workpackage_phase_status_transitions_total.labels(status=status).inc()


def observe_duration_recompute(scope: str, count: int = 1) -> None:
    if count > 0:
        workpackage_duration_recomputes_total.labels(scope=scope).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
