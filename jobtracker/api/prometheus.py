"""
Prometheus metrics endpoint and dashboard metrics
"""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse

from ..container import Services
from ..services.prometheus_metrics import prometheus_metrics
from .deps import get_services

router = APIRouter(tags=["Metrics"])


@router.get("/metrics", summary="Dashboard metrics")
def dashboard_metrics(svc: Services = Depends(get_services)):
    """Active jobs, completions today and average turnaround in minutes."""
    return svc.jobs.dashboard_metrics()


@router.get("/metrics/prometheus", summary="Prometheus metrics")
def get_prometheus_metrics() -> Response:
    """Metrics in Prometheus exposition format."""
    return PlainTextResponse(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type()
    )
