"""
Inbound vendor push notifications
"""

import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from ..container import Services
from .deps import get_services

logger = logging.getLogger("jobtracker.api.webhooks")

router = APIRouter(tags=["Webhooks"])


@router.post("/webhooks/forms")
async def forms_webhook(request: Request, svc: Services = Depends(get_services)):
    """Vendor submission notification (XML body).

    Ignored, duplicate and discarded notifications still answer 200 so the
    vendor does not keep redelivering them.
    """
    body = await request.body()
    return await run_in_threadpool(svc.webhook.handle, body)


@router.get("/webhooks/metrics")
def webhook_metrics(svc: Services = Depends(get_services)):
    data = svc.stats.snapshot()
    data["dedup"] = svc.ledger.stats()
    return data
