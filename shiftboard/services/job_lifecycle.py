"""
Job lifecycle engine.

Owns job creation with availability-based invitation targeting, worker
responses (accept / decline / respond), withdrawal from accepted jobs and the
capacity status recomputation every one of them goes through.

Every public function:
  - takes the caller's Principal explicitly,
  - performs its Job/Worker writes in a single transaction,
  - returns the notification obligations the transition produced; nothing is
    sent from here.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from ..auth.principal import Principal
from ..models.models import Job, Worker, WorkerActivity, Shift
from .errors import (
    AlreadyAccepted,
    AvailabilityMismatch,
    ConcurrentUpdate,
    Forbidden,
    InvalidJob,
    InvalidResponse,
    JobAlreadyFilled,
    NoWorkersFound,
    NotAccepted,
    NotFound,
    Unauthorized,
)
from .notifications import (
    JOB_ACCEPTED,
    JOB_DECLINED,
    JOB_REMOVED,
    Obligation,
    invitation_obligations,
    job_available_obligations,
    job_payload,
    tenant_obligations,
)
from .tenants import Tenant, resolve_tenant

logger = structlog.get_logger(__name__)

ACCEPT = "accept"
DECLINE = "decline"


@dataclass
class JobOutcome:
    job: Job
    obligations: List[Obligation] = field(default_factory=list)


# Shared helpers

def _now() -> datetime:
    return datetime.now(timezone.utc)


def as_uuid(value, what: str = "Record") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFound(f"{what} not found.")


def shift_value(shift) -> str:
    try:
        return Shift(shift).value
    except ValueError:
        raise InvalidJob("shift must be AM or PM")


def commit(db: Session) -> None:
    """Commit the unit of work; a lost update on a versioned job becomes ConcurrentUpdate."""
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.warning("job_concurrent_update")
        raise ConcurrentUpdate()


def log_activity(worker: Worker, message: str) -> None:
    worker.activities.append(WorkerActivity(timestamp=_now(), message=message))


def require_tenant(db: Session, principal: Optional[Principal]) -> Tenant:
    if principal is None or not principal.is_tenant:
        raise Unauthorized()
    tenant = resolve_tenant(db, principal.user_code)
    if tenant is None:
        raise Unauthorized("Unauthorized. User code is required.")
    return tenant


def acting_worker(db: Session, principal: Optional[Principal]) -> Worker:
    if principal is None or not principal.is_worker:
        raise Forbidden("Unauthorized. Worker ID is required.")
    worker = db.query(Worker).filter(Worker.id == principal.id).first()
    if worker is None:
        raise NotFound("Worker not found.")
    if not worker.approved:
        raise Forbidden("Worker not approved")
    return worker


def load_job(db: Session, job_id, user_code: str) -> Job:
    """Load a job of the given tenant, locking the row for the rest of the transaction."""
    job = (
        db.query(Job)
        .filter(Job.id == as_uuid(job_id, "Job"))
        .with_for_update()
        .first()
    )
    # Jobs of other tenants are reported as missing
    if job is None or job.user_code != user_code:
        raise NotFound("Job not found.")
    return job


def tenant_workers(db: Session, user_code: str) -> List[Worker]:
    return (
        db.query(Worker)
        .filter(Worker.user_code == user_code)
        .order_by(Worker.created_at, Worker.email)
        .all()
    )


def refresh_job_status(job: Job) -> bool:
    """
    Recompute job_status from the current headcount.

    Returns:
        True when the job flipped from filled to open
    """
    was_filled = bool(job.job_status)
    job.job_status = len(job.workers) >= job.workers_required
    job.updated_at = _now()
    return was_filled and not job.job_status


def release_worker(job: Job, worker: Worker) -> bool:
    """
    Detach a worker from a job (accepted and invited) and recompute the status.

    Returns:
        True when the job reopened as a result
    """
    if worker in job.workers:
        job.workers.remove(worker)
    if worker in job.invited_workers:
        job.invited_workers.remove(worker)
    return refresh_job_status(job)


def reopen_obligations(db: Session, jobs: Iterable[Job]) -> List[Obligation]:
    """JOB_AVAILABLE broadcast to every worker of the owning tenant, for each reopened job."""
    obligations: List[Obligation] = []
    pools: Dict[str, List[Worker]] = {}
    for job in jobs:
        if job.user_code not in pools:
            pools[job.user_code] = tenant_workers(db, job.user_code)
        obligations.extend(job_available_obligations(pools[job.user_code], job))
        logger.info("job_reopened", job_id=str(job.id), notified=len(pools[job.user_code]))
    return obligations


def _tenant_notice(db: Session, job: Job, worker: Worker, template: str) -> List[Obligation]:
    data = {**job_payload(job), "worker_name": worker.name}
    return tenant_obligations(resolve_tenant(db, job.user_code), template, data)


def _clean_text(value: Optional[str], field_name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidJob(f"{field_name} is required")
    return value


def _workers_required(value) -> int:
    try:
        required = int(value)
    except (TypeError, ValueError):
        raise InvalidJob("workers_required must be a positive integer")
    if required < 1:
        raise InvalidJob("workers_required must be a positive integer")
    return required


# Creation & invitation targeting

def create_job(
    db: Session,
    principal: Principal,
    *,
    title: str,
    description: str,
    location: str,
    date: date_type,
    shift,
    workers_required: int,
) -> JobOutcome:
    """
    Create a job and invite workers.

    Workers of the tenant whose availability holds (date, shift) are invited.
    When nobody matches, the whole worker pool is invited instead so a job is
    never silently unfillable. The invitation set is fixed here and is not
    recomputed when availability changes later.
    """
    tenant = require_tenant(db, principal)
    title = _clean_text(title, "title")
    description = _clean_text(description, "description")
    location = _clean_text(location, "location")
    required = _workers_required(workers_required)
    shift_val = shift_value(shift)
    if not isinstance(date, date_type):
        raise InvalidJob("date must be a calendar date")

    workers = (
        db.query(Worker)
        .options(selectinload(Worker.availability))
        .filter(Worker.user_code == tenant.user_code)
        .order_by(Worker.created_at, Worker.email)
        .all()
    )
    if not workers:
        raise NoWorkersFound()

    available = [w for w in workers if w.has_slot(date, shift_val)]
    invited = available or workers

    job = Job(
        title=title,
        description=description,
        location=location,
        date=date,
        shift=shift_val,
        workers_required=required,
        job_status=False,
        user_code=tenant.user_code,
        created_at=_now(),
        updated_at=_now(),
    )
    job.invited_workers = list(invited)
    for worker in invited:
        log_activity(worker, f"You have been invited to a new job: {title}")
    db.add(job)
    commit(db)

    logger.info(
        "job_created",
        job_id=str(job.id),
        user_code=tenant.user_code,
        invited=len(invited),
        fallback_to_all=not available,
    )
    return JobOutcome(job, invitation_obligations(invited, job))


def invite_workers(db: Session, principal: Principal, job_id, worker_ids: Iterable) -> JobOutcome:
    """Invite additional workers of the same tenant to an open job."""
    tenant = require_tenant(db, principal)
    job = load_job(db, job_id, tenant.user_code)
    if job.job_status:
        raise JobAlreadyFilled()

    ids = {as_uuid(w, "Worker") for w in worker_ids}
    workers = (
        db.query(Worker)
        .filter(Worker.id.in_(ids), Worker.user_code == tenant.user_code)
        .all() if ids else []
    )
    if len(workers) != len(ids):
        raise NotFound("Worker not found.")

    newly_invited = [w for w in workers if w not in job.workers and w not in job.invited_workers]
    for worker in newly_invited:
        job.invited_workers.append(worker)
        log_activity(worker, f"You have been invited to a new job: {job.title}")
    refresh_job_status(job)
    commit(db)

    logger.info("job_workers_invited", job_id=str(job.id), invited=len(newly_invited))
    return JobOutcome(job, invitation_obligations(newly_invited, job))


# Worker responses

def accept_job(db: Session, principal: Principal, job_id) -> JobOutcome:
    """
    Accept a job. Checks, in order: the job is open, the worker is available
    for (date, shift) right now, the worker has not accepted it already.
    Nothing is written when a check fails.
    """
    worker = acting_worker(db, principal)
    job = load_job(db, job_id, worker.user_code)

    if job.job_status:
        raise JobAlreadyFilled()
    if not worker.has_slot(job.date, job.shift):
        raise AvailabilityMismatch()
    if worker in job.workers:
        raise AlreadyAccepted()

    if worker in job.invited_workers:
        job.invited_workers.remove(worker)
    job.workers.append(worker)
    refresh_job_status(job)
    log_activity(worker, f"You accepted the job: {job.title}")
    commit(db)

    logger.info(
        "job_accepted",
        job_id=str(job.id),
        worker_id=str(worker.id),
        workers=len(job.workers),
        filled=job.job_status,
    )
    return JobOutcome(job, _tenant_notice(db, job, worker, JOB_ACCEPTED))


def decline_job(db: Session, principal: Principal, job_id) -> JobOutcome:
    """Decline an invitation. Declining twice, or without an invitation, is harmless."""
    worker = acting_worker(db, principal)
    job = load_job(db, job_id, worker.user_code)

    if worker in job.invited_workers:
        job.invited_workers.remove(worker)
    # Declining never touches accepted workers; this only repairs a stale flag
    reopened = refresh_job_status(job)
    log_activity(worker, f"You declined the job: {job.title}")
    commit(db)

    logger.info("job_declined", job_id=str(job.id), worker_id=str(worker.id))
    obligations = _tenant_notice(db, job, worker, JOB_DECLINED)
    if reopened:
        obligations.extend(reopen_obligations(db, [job]))
    return JobOutcome(job, obligations)


def respond_to_invitation(db: Session, principal: Principal, job_id, response: str) -> JobOutcome:
    """Single entry point for answering an invitation; same rules as accept_job / decline_job."""
    answer = (response or "").strip().lower()
    if answer == ACCEPT:
        return accept_job(db, principal, job_id)
    if answer == DECLINE:
        return decline_job(db, principal, job_id)
    raise InvalidResponse()


def remove_accepted_job(db: Session, principal: Principal, job_id) -> JobOutcome:
    """
    Withdraw from an accepted job. If that reopens the job, every worker of the
    tenant is told it is available again, regardless of availability.
    """
    worker = acting_worker(db, principal)
    job = load_job(db, job_id, worker.user_code)

    if worker not in job.workers:
        raise NotAccepted()

    job.workers.remove(worker)
    reopened = refresh_job_status(job)
    log_activity(worker, f"You removed yourself from the job: {job.title}")
    commit(db)

    logger.info("job_removed", job_id=str(job.id), worker_id=str(worker.id), reopened=reopened)
    obligations = _tenant_notice(db, job, worker, JOB_REMOVED)
    if reopened:
        obligations.extend(reopen_obligations(db, [job]))
    return JobOutcome(job, obligations)


# Tenant-side maintenance

def update_job(
    db: Session,
    principal: Principal,
    job_id,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    workers_required: Optional[int] = None,
) -> JobOutcome:
    tenant = require_tenant(db, principal)
    job = load_job(db, job_id, tenant.user_code)

    if title is not None:
        job.title = _clean_text(title, "title")
    if description is not None:
        job.description = _clean_text(description, "description")
    if location is not None:
        job.location = _clean_text(location, "location")
    if workers_required is not None:
        job.workers_required = _workers_required(workers_required)
    reopened = refresh_job_status(job)
    commit(db)

    logger.info("job_updated", job_id=str(job.id), reopened=reopened)
    return JobOutcome(job, reopen_obligations(db, [job]) if reopened else [])


def delete_job(db: Session, principal: Principal, job_id) -> Dict[str, Any]:
    tenant = require_tenant(db, principal)
    job = load_job(db, job_id, tenant.user_code)
    summary = job_payload(job)
    db.delete(job)
    commit(db)
    logger.info("job_deleted", job_id=summary["job_id"])
    return summary
