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

store_pages_fetched_total = Counter(
    "store_pages_fetched_total",
    "Total pages fetched by the paginated reader",
    ["source"],
)

store_page_failures_total = Counter(
    "store_page_failures_total",
    "Total page fetches that failed and ended a paginated read",
    ["source"],
)

store_chunk_queries_total = Counter(
    "store_chunk_queries_total",
    "Total chunked membership queries issued",
    ["source"],
)

store_chunk_failures_total = Counter(
    "store_chunk_failures_total",
    "Total chunked membership queries that failed",
    ["source"],
)

assignment_changes_total = Counter(
    "assignment_changes_total",
    "Total client assignment rows inserted or deleted",
    ["operation"],
)

assignment_reconcile_failures_total = Counter(
    "assignment_reconcile_failures_total",
    "Total assignment reconciliations that stopped partway",
)

assignment_reconcile_duration_seconds = Histogram(
    "assignment_reconcile_duration_seconds",
    "Assignment reconciliation duration in seconds",
)

activity_touched_clients_total = Counter(
    "activity_touched_clients_total",
    "Total touched clients reported by the activity aggregator",
    ["source"],
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
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_store_page(source: str) -> None:
    store_pages_fetched_total.labels(source=source or "unknown").inc()


def observe_store_page_failure(source: str) -> None:
    store_page_failures_total.labels(source=source or "unknown").inc()


def observe_store_chunk(source: str) -> None:
    store_chunk_queries_total.labels(source=source or "unknown").inc()


def observe_store_chunk_failure(source: str) -> None:
    store_chunk_failures_total.labels(source=source or "unknown").inc()


def observe_assignment_changes(operation: str, count: int) -> None:
    if count > 0:
        assignment_changes_total.labels(operation=operation).inc(count)


def observe_assignment_reconcile(duration: float, *, failed: bool) -> None:
    assignment_reconcile_duration_seconds.observe(duration)
    if failed:
        assignment_reconcile_failures_total.inc()


def observe_touched_clients(source: str, count: int) -> None:
    if count > 0:
        activity_touched_clients_total.labels(source=source).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
