import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.principal import Principal
from ..auth.security import require_tenant, require_worker
from ..models.models import Job, Worker
from ..schemas.jobs import JobCreate, JobUpdate, InvitationResponse, InviteWorkersRequest
from ..services import job_lifecycle
from ..services.job_lifecycle import acting_worker, load_job
from ..services.notifications import NotificationDispatcher, get_dispatcher

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _job_to_dict(job: Job, detail: bool = False) -> dict:
    d = {
        "id": str(job.id),
        "title": job.title,
        "description": job.description,
        "location": job.location,
        "date": job.date.isoformat() if job.date else None,
        "shift": job.shift,
        "workers_required": job.workers_required,
        "workers_accepted": len(job.workers),
        "job_status": job.job_status,
        "user_code": job.user_code,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "updated_at": job.updated_at.isoformat() if job.updated_at else None,
    }
    if detail:
        d["workers"] = [str(w.id) for w in job.workers]
        d["invited_workers"] = [str(w.id) for w in job.invited_workers]
    return d


def _assigned_worker_to_dict(w: Worker) -> dict:
    return {"id": str(w.id), "name": w.name, "email": w.email, "phone": w.phone}


def _dispatched(db: Session, dispatcher: NotificationDispatcher, outcome) -> dict:
    dispatcher.dispatch(db, outcome.obligations)
    return {**_job_to_dict(outcome.job, detail=True), "notifications": len(outcome.obligations)}


# Tenant side

@router.post("", status_code=201)
def create_job(
    body: JobCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_tenant),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = job_lifecycle.create_job(
        db,
        principal,
        title=body.title,
        description=body.description,
        location=body.location,
        date=body.date,
        shift=body.shift,
        workers_required=body.workers_required,
    )
    return _dispatched(db, dispatcher, outcome)


@router.get("")
def list_jobs(
    status: Optional[str] = Query(None, pattern="^(open|filled)$"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_tenant),
):
    q = db.query(Job).filter(Job.user_code == principal.user_code)
    if status == "open":
        q = q.filter(Job.job_status.is_(False))
    elif status == "filled":
        q = q.filter(Job.job_status.is_(True))
    return [_job_to_dict(j) for j in q.order_by(Job.date.desc(), Job.shift).all()]


@router.get("/count")
def count_jobs(db: Session = Depends(get_db), principal: Principal = Depends(require_tenant)):
    base = db.query(Job).filter(Job.user_code == principal.user_code)
    total = base.count()
    filled = base.filter(Job.job_status.is_(True)).count()
    return {"total": total, "open": total - filled, "filled": filled}


# Worker side (declared before /{job_id} so the literal paths win)

@router.get("/open")
def list_open_jobs(db: Session = Depends(get_db), principal: Principal = Depends(require_worker)):
    """Upcoming open jobs of the worker's company that the worker has not accepted yet."""
    worker = acting_worker(db, principal)
    jobs = (
        db.query(Job)
        .filter(
            Job.user_code == worker.user_code,
            Job.job_status.is_(False),
            Job.date >= date.today(),
            ~Job.workers.any(Worker.id == worker.id),
        )
        .order_by(Job.date, Job.shift)
        .all()
    )
    return [_job_to_dict(j) for j in jobs]


@router.get("/mine")
def list_my_jobs(db: Session = Depends(get_db), principal: Principal = Depends(require_worker)):
    worker = acting_worker(db, principal)
    jobs = sorted((j for j in worker.accepted_jobs if j.date >= date.today()), key=lambda j: (j.date, j.shift))
    return [_job_to_dict(j) for j in jobs]


@router.get("/completed")
def list_completed_jobs(db: Session = Depends(get_db), principal: Principal = Depends(require_worker)):
    worker = acting_worker(db, principal)
    jobs = sorted((j for j in worker.accepted_jobs if j.date < date.today()), key=lambda j: (j.date, j.shift), reverse=True)
    return [_job_to_dict(j) for j in jobs]


@router.post("/respond-invitation")
def respond_invitation(
    body: InvitationResponse,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_worker),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = job_lifecycle.respond_to_invitation(db, principal, body.job_id, body.response)
    return _dispatched(db, dispatcher, outcome)


@router.put("/{job_id}/accept")
def accept_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_worker),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return _dispatched(db, dispatcher, job_lifecycle.accept_job(db, principal, job_id))


@router.post("/{job_id}/decline")
def decline_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_worker),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return _dispatched(db, dispatcher, job_lifecycle.decline_job(db, principal, job_id))


@router.put("/{job_id}/remove-accepted")
def remove_accepted_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_worker),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    return _dispatched(db, dispatcher, job_lifecycle.remove_accepted_job(db, principal, job_id))


# Single job (tenant side)

@router.get("/{job_id}")
def get_job(job_id: uuid.UUID, db: Session = Depends(get_db), principal: Principal = Depends(require_tenant)):
    return _job_to_dict(load_job(db, job_id, principal.user_code), detail=True)


@router.put("/{job_id}")
def update_job(
    job_id: uuid.UUID,
    body: JobUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_tenant),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = job_lifecycle.update_job(db, principal, job_id, **body.model_dump(exclude_none=True))
    return _dispatched(db, dispatcher, outcome)


@router.delete("/{job_id}")
def delete_job(job_id: uuid.UUID, db: Session = Depends(get_db), principal: Principal = Depends(require_tenant)):
    summary = job_lifecycle.delete_job(db, principal, job_id)
    return {"status": "ok", "job": summary}


@router.post("/{job_id}/invite")
def invite_workers(
    job_id: uuid.UUID,
    body: InviteWorkersRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_tenant),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = job_lifecycle.invite_workers(db, principal, job_id, body.worker_ids)
    return _dispatched(db, dispatcher, outcome)


@router.get("/{job_id}/assigned-workers")
def assigned_workers(job_id: uuid.UUID, db: Session = Depends(get_db), principal: Principal = Depends(require_tenant)):
    job = load_job(db, job_id, principal.user_code)
    return [_assigned_worker_to_dict(w) for w in job.workers]
