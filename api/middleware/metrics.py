"""
Prometheus metrics middleware for the guided intake API.

Exposes /metrics endpoint with request counters, latency histograms,
and intake funnel metrics.
"""

import logging
import time

from fastapi import Request, Response
from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST,
)
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    "intake_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "intake_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
ACTIVE_REQUESTS = Gauge(
    "intake_http_active_requests",
    "Currently active HTTP requests",
)

# Funnel metrics
SESSIONS_STARTED = Counter(
    "intake_sessions_started_total",
    "Chat sessions opened",
    ["resumed"],
)
SUBMISSIONS = Counter(
    "intake_submissions_total",
    "Step submissions by outcome",
    ["step_id", "outcome"],
)
LEADS_CREATED = Counter(
    "intake_leads_created_total",
    "Leads created from completed chats",
    ["priority"],
)
LEAD_FAILURES = Counter(
    "intake_lead_failures_total",
    "Lead creation failures",
)


def record_session_start(resumed: bool):
    SESSIONS_STARTED.labels(resumed=str(resumed).lower()).inc()


def record_submission(step_id: str, outcome: str):
    """Record a submission outcome: accepted, invalid or stale."""
    SUBMISSIONS.labels(step_id=step_id, outcome=outcome).inc()


def record_lead_created(priority: str):
    LEADS_CREATED.labels(priority=priority).inc()


def record_lead_failure():
    LEAD_FAILURES.inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        ACTIVE_REQUESTS.inc()
        start = time.time()

        try:
            response = await call_next(request)
        finally:
            ACTIVE_REQUESTS.dec()

        duration = time.time() - start
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
