import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.principal import Principal
from ..auth.security import get_current_principal, require_tenant, require_worker
from ..models.models import Shift, Worker
from ..schemas.workers import (
    WorkerRegisterRequest,
    AvailabilitySlot,
    CancelShiftRequest,
    WorkerUpdate,
    WorkerMessageRequest,
)
from ..services import workers as registry
from ..services.job_lifecycle import acting_worker
from ..services.notifications import NotificationDispatcher, get_dispatcher
from .jobs import _job_to_dict

router = APIRouter(prefix="/workers", tags=["workers"])


def _worker_to_dict(w: Worker) -> dict:
    return {
        "id": str(w.id),
        "name": w.name,
        "email": w.email,
        "phone": w.phone,
        "joining_date": w.joining_date.isoformat() if w.joining_date else None,
        "approved": w.approved,
        "user_code": w.user_code,
        "created_at": w.created_at.isoformat() if w.created_at else None,
    }


def _slots(w: Worker) -> list:
    return [{"date": s.date.isoformat(), "shift": s.shift} for s in w.availability]


@router.post("", status_code=201)
def register_worker(
    body: WorkerRegisterRequest,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = registry.register_worker(db, **body.model_dump())
    dispatcher.dispatch(db, outcome.obligations)
    return _worker_to_dict(outcome.worker)


@router.get("/pending")
def list_pending(db: Session = Depends(get_db), principal: Principal = Depends(require_tenant)):
    return [_worker_to_dict(w) for w in registry.pending_workers(db, principal)]


@router.get("/approved")
def list_approved(db: Session = Depends(get_db), principal: Principal = Depends(require_tenant)):
    return [_worker_to_dict(w) for w in registry.approved_workers(db, principal)]


@router.get("/available")
def list_available(
    on: date = Query(..., alias="date"),
    shift: Shift = Query(...),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_tenant),
):
    return [_worker_to_dict(w) for w in registry.available_workers(db, principal, on, shift)]


@router.post("/cancel-shift")
def cancel_shift(
    body: CancelShiftRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = registry.cancel_shift_for_worker(db, principal, body.worker_id, body.date, body.shift)
    dispatcher.dispatch(db, outcome.obligations)
    return {
        "worker_id": str(outcome.worker_id),
        "affected_job_count": outcome.affected_job_count,
        "affected_job_ids": [str(j) for j in outcome.affected_job_ids],
    }


@router.post("/messages")
def send_message(
    body: WorkerMessageRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_tenant),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = registry.send_message_to_workers(db, principal, body.message)
    dispatcher.dispatch(db, outcome.obligations)
    return {"status": "ok", "recipient_count": outcome.recipient_count}


# Current worker

@router.get("/me")
def me(db: Session = Depends(get_db), principal: Principal = Depends(require_worker)):
    worker = acting_worker(db, principal)
    return {**_worker_to_dict(worker), "availability": _slots(worker)}


@router.get("/me/availability")
def my_availability(db: Session = Depends(get_db), principal: Principal = Depends(require_worker)):
    return _slots(acting_worker(db, principal))


@router.put("/me/availability")
def mark_availability(
    body: AvailabilitySlot,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_worker),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = registry.mark_availability(db, principal, body.date, body.shift)
    dispatcher.dispatch(db, outcome.obligations)
    return _slots(outcome.worker)


@router.get("/me/invited-jobs")
def my_invited_jobs(db: Session = Depends(get_db), principal: Principal = Depends(require_worker)):
    worker = acting_worker(db, principal)
    jobs = sorted(worker.invited_jobs, key=lambda j: (j.date, j.shift))
    return [_job_to_dict(j) for j in jobs]


@router.get("/me/activities")
def my_activities(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_worker),
):
    return [
        {"timestamp": a.timestamp.isoformat() if a.timestamp else None, "message": a.message}
        for a in registry.worker_activities(db, principal, limit=limit)
    ]


@router.get("/me/messages")
def my_messages(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_worker),
):
    return [
        {
            "id": str(m.id),
            "sender_name": m.sender_name,
            "message": m.message,
            "created_at": m.created_at.isoformat() if m.created_at else None,
        }
        for m in registry.worker_messages(db, principal, limit=limit)
    ]


# Tenant actions on a worker

@router.put("/{worker_id}/approve")
def approve_worker(
    worker_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_tenant),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = registry.approve_worker(db, principal, worker_id)
    dispatcher.dispatch(db, outcome.obligations)
    return _worker_to_dict(outcome.worker)


@router.put("/{worker_id}")
def update_worker(
    worker_id: uuid.UUID,
    body: WorkerUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_tenant),
):
    outcome = registry.update_worker(db, principal, worker_id, **body.model_dump())
    return _worker_to_dict(outcome.worker)


def _deletion_to_dict(outcome) -> dict:
    return {
        "status": "ok",
        "worker_id": str(outcome.worker_id),
        "affected_jobs": outcome.affected_jobs,
    }


@router.delete("/{worker_id}/decline")
def decline_worker(
    worker_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_tenant),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = registry.decline_worker(db, principal, worker_id)
    dispatcher.dispatch(db, outcome.obligations)
    return _deletion_to_dict(outcome)


@router.delete("/{worker_id}")
def delete_worker(
    worker_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_tenant),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = registry.delete_worker(db, principal, worker_id)
    dispatcher.dispatch(db, outcome.obligations)
    return _deletion_to_dict(outcome)
