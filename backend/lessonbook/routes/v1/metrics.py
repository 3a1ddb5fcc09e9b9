# backend/lessonbook/routes/v1/metrics.py
"""
Prometheus metrics endpoint.

Public, following standard Prometheus practice. Exposes the timings and
counters recorded by ``@measure_operation`` and the payout/event counters.
"""

from fastapi import APIRouter, Response

from ...monitoring.prometheus_metrics import prometheus_metrics

router = APIRouter(tags=["monitoring"])


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=prometheus_metrics.get_metrics(), media_type=prometheus_metrics.CONTENT_TYPE)
