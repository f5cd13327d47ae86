"""
Prometheus metrics endpoint for monitoring infrastructure.

Public endpoint following standard Prometheus practice. It exposes the
service operation, slot contention, invoice transition and hold expiry
metrics recorded across the engine.
"""

from fastapi import APIRouter, Response
from prometheus_client import Counter

from ..monitoring.prometheus_metrics import REGISTRY, prometheus_metrics

router = APIRouter(tags=["monitoring"])

_scrape_counter = Counter(
    "lessonbook_prometheus_scrapes_total",
    "Total number of Prometheus metrics scrapes",
    registry=REGISTRY,
)


@router.get("/metrics/prometheus", include_in_schema=False)
def prometheus_metrics_endpoint() -> Response:
    _scrape_counter.inc()
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
        headers={"Cache-Control": "no-store"},
    )
