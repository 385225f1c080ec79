"""
Jobs API: creation, lifecycle actions, timeline, comments and parts
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..container import Services
from ..schemas.job import (
    CancelRequest, CheckInRequest, CommentCreate, DispatchDeliveryRequest, DispatchPickupRequest,
    JobCreate, JobUpdate, MarkDeliveredRequest, MarkPickedUpRequest, NoteCreate, PartIn, PartUpdate,
    StartServiceRequest,
)
from ..services.lifecycle import JobLifecycle
from .deps import actor_email, get_services

logger = logging.getLogger("jobtracker.api.jobs")

router = APIRouter(tags=["Jobs"])


@router.post("/jobs", status_code=201)
def create_job(body: JobCreate, svc: Services = Depends(get_services), actor: Optional[str] = Depends(actor_email)):
    data = body.model_dump(exclude={"arrival_path", "pickup_driver_email", "pickup_notes", "parts"})
    job = svc.jobs.create_job(
        data,
        arrival_path=body.arrival_path,
        pickup_driver_email=body.pickup_driver_email,
        pickup_notes=body.pickup_notes,
        parts=[p.model_dump(exclude_none=True) for p in body.parts],
        actor_email=actor,
    )
    return job.to_dict()


@router.get("/jobs")
def list_jobs(state: Optional[List[str]] = Query(None), svc: Services = Depends(get_services)):
    return {"jobs": [j.to_dict() for j in svc.store.list_jobs(state)]}


@router.get("/jobs/state-machine")
def state_machine():
    return JobLifecycle.state_machine_info()


@router.get("/jobs/{job_id}")
def get_job(job_id: str, svc: Services = Depends(get_services)):
    return svc.lifecycle.get_job(job_id).to_dict()


@router.patch("/jobs/{job_id}")
def update_job(job_id: str, body: JobUpdate, svc: Services = Depends(get_services)):
    return svc.lifecycle.update_details(job_id, body.model_dump(exclude_none=True)).to_dict()


# Actions

@router.post("/jobs/{job_id}/dispatch-pickup")
def dispatch_pickup(job_id: str, body: DispatchPickupRequest, svc: Services = Depends(get_services),
                    actor: Optional[str] = Depends(actor_email)):
    return svc.lifecycle.dispatch_pickup(job_id, body.driver_email, body.notes, actor_email=actor).to_dict()


@router.post("/jobs/{job_id}/mark-picked-up")
def mark_picked_up(job_id: str, body: MarkPickedUpRequest, svc: Services = Depends(get_services),
                   actor: Optional[str] = Depends(actor_email)):
    return svc.lifecycle.mark_picked_up(job_id, item_count=body.item_count, actor="csr",
                                        actor_email=actor).to_dict()


@router.post("/jobs/{job_id}/check-in")
def check_in(job_id: str, body: CheckInRequest, svc: Services = Depends(get_services),
             actor: Optional[str] = Depends(actor_email)):
    job = svc.jobs.check_in(
        job_id,
        parts=[p.model_dump(exclude_none=True) for p in body.parts],
        technician=body.technician,
        shop_handoff=body.shop_handoff,
        dispatch_service=body.dispatch_service,
        actor_email=actor,
    )
    return job.to_dict()


@router.post("/jobs/{job_id}/start-service")
def start_service(job_id: str, body: StartServiceRequest, svc: Services = Depends(get_services),
                  actor: Optional[str] = Depends(actor_email)):
    return svc.lifecycle.start_service(job_id, technician=body.technician, actor_email=actor).to_dict()


@router.post("/jobs/{job_id}/mark-ready")
def mark_ready(job_id: str, svc: Services = Depends(get_services), actor: Optional[str] = Depends(actor_email)):
    return svc.lifecycle.mark_ready(job_id, actor_email=actor).to_dict()


@router.post("/jobs/{job_id}/mark-picked-up-from-shop")
def mark_picked_up_from_shop(job_id: str, svc: Services = Depends(get_services),
                             actor: Optional[str] = Depends(actor_email)):
    return svc.lifecycle.mark_picked_up_from_shop(job_id, actor_email=actor).to_dict()


@router.post("/jobs/{job_id}/dispatch-delivery")
def dispatch_delivery(job_id: str, body: DispatchDeliveryRequest, svc: Services = Depends(get_services),
                      actor: Optional[str] = Depends(actor_email)):
    job = svc.lifecycle.dispatch_delivery(job_id, body.driver_email, address=body.address, notes=body.notes,
                                          order_numbers=body.order_numbers, actor_email=actor)
    return job.to_dict()


@router.post("/jobs/{job_id}/mark-delivered")
def mark_delivered(job_id: str, body: MarkDeliveredRequest, svc: Services = Depends(get_services),
                   actor: Optional[str] = Depends(actor_email)):
    job = svc.lifecycle.mark_delivered(job_id, actor="csr", actor_email=actor,
                                       delivery_method=body.delivery_method, order_numbers=body.order_numbers)
    return job.to_dict()


@router.post("/jobs/{job_id}/cancel")
def cancel_job(job_id: str, body: CancelRequest, svc: Services = Depends(get_services),
               actor: Optional[str] = Depends(actor_email)):
    return svc.lifecycle.cancel_job(job_id, reason=body.reason, actor_email=actor).to_dict()


@router.post("/jobs/{job_id}/check-updates")
def check_updates(job_id: str, svc: Services = Depends(get_services)):
    return svc.pipeline.check_for_updates(job_id, source="manual_check")


# Timeline

@router.get("/jobs/{job_id}/events")
def job_events(job_id: str, svc: Services = Depends(get_services)):
    return {"events": [e.to_dict() for e in svc.lifecycle.timeline(job_id)]}


@router.post("/jobs/{job_id}/notes", status_code=201)
def add_note(job_id: str, body: NoteCreate, svc: Services = Depends(get_services),
             actor: Optional[str] = Depends(actor_email)):
    return svc.lifecycle.add_note(job_id, body.text, actor_email=actor).to_dict()


# Comments

@router.get("/jobs/{job_id}/comments")
def list_comments(job_id: str, svc: Services = Depends(get_services)):
    return {"comments": [c.to_dict() for c in svc.jobs.list_comments(job_id)]}


@router.post("/jobs/{job_id}/comments", status_code=201)
def add_comment(job_id: str, body: CommentCreate, svc: Services = Depends(get_services)):
    return svc.jobs.add_comment(job_id, body.author, body.text).to_dict()


# Parts

@router.get("/jobs/{job_id}/parts")
def list_parts(job_id: str, svc: Services = Depends(get_services)):
    return {"parts": [p.to_dict() for p in svc.jobs.list_parts(job_id)]}


@router.post("/jobs/{job_id}/parts", status_code=201)
def add_part(job_id: str, body: PartIn, svc: Services = Depends(get_services)):
    return svc.jobs.add_part(job_id, body.model_dump(exclude_none=True)).to_dict()


@router.patch("/jobs/{job_id}/parts/{part_id}")
def update_part(job_id: str, part_id: str, body: PartUpdate, svc: Services = Depends(get_services)):
    return svc.jobs.update_part(job_id, part_id, body.model_dump(exclude_none=True)).to_dict()
