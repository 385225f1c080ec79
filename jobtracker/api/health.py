from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..config import APP_VERSION
from ..container import Services
from ..logging_config import get_memory_handler
from .deps import get_services

router = APIRouter(tags=["System"])


@router.get("/health")
def health(svc: Services = Depends(get_services)):
    return {
        "status": "ok",
        "version": APP_VERSION,
        "poller": {"running": svc.poller.is_running(), "last_cycle": svc.poller.last_cycle},
    }


@router.get("/logs/tail")
def logs_tail(limit: int = Query(200, ge=1, le=5000), component: Optional[str] = None,
              job_id: Optional[str] = None):
    """Recent log records from the in-memory ring buffer."""
    return {"logs": get_memory_handler().get_logs(limit=limit, component=component, job_id=job_id)}
