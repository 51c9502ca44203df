"""
Worker registry.

Registration, approval, availability and the two cascades that detach a worker
from jobs: shift cancellation and account deletion. Cascades reuse the job
lifecycle's release_worker so job_status is recomputed the same way everywhere.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.principal import Principal
from ..auth.security import get_password_hash
from ..models.models import Job, Worker, WorkerActivity, WorkerAvailability, WorkerMessage
from .errors import (
    DuplicateWorker,
    Forbidden,
    InvalidRequest,
    NotFound,
    NoWorkersFound,
    SlotNotFound,
    Unauthorized,
    UnknownTenant,
)
from .job_lifecycle import (
    acting_worker,
    as_uuid,
    commit,
    log_activity,
    release_worker,
    reopen_obligations,
    require_tenant,
    shift_value,
    tenant_workers,
)
from .notifications import (
    AVAILABILITY_MARKED,
    EMAIL,
    REGISTRATION_RECEIVED,
    SHIFT_CANCELLED,
    WORKER_APPROVED,
    WORKER_DECLINED,
    WORKER_DELETED,
    WORKER_REGISTERED,
    Obligation,
    job_payload,
    message_obligations,
    tenant_obligations,
    worker_obligations,
)
from .tenants import resolve_tenant

logger = structlog.get_logger(__name__)


@dataclass
class WorkerOutcome:
    worker: Worker
    obligations: List[Obligation] = field(default_factory=list)


@dataclass
class BroadcastOutcome:
    messages: List[WorkerMessage]
    obligations: List[Obligation] = field(default_factory=list)

    @property
    def recipient_count(self) -> int:
        return len(self.messages)


@dataclass
class CancellationOutcome:
    worker_id: uuid.UUID
    affected_job_ids: List[uuid.UUID]
    obligations: List[Obligation] = field(default_factory=list)

    @property
    def affected_job_count(self) -> int:
        return len(self.affected_job_ids)


@dataclass
class DeletionOutcome:
    worker_id: uuid.UUID
    affected_jobs: List[Dict[str, Any]]
    obligations: List[Obligation] = field(default_factory=list)


def _display_date(value: date_type) -> str:
    return value.strftime("%d/%m/%Y")


def tenant_worker(db: Session, principal: Principal, worker_id) -> Worker:
    """Load a worker owned by the calling tenant; workers of other tenants are reported as missing."""
    tenant = require_tenant(db, principal)
    worker = db.query(Worker).filter(Worker.id == as_uuid(worker_id, "Worker")).first()
    if worker is None or worker.user_code != tenant.user_code:
        raise NotFound("Worker not found.")
    return worker


def _subject_worker(db: Session, principal: Principal, worker_id) -> Worker:
    """Worker acted upon by a cancellation: a worker may only act on itself, a tenant on its own workers."""
    if principal is None:
        raise Unauthorized()
    if principal.is_worker:
        if worker_id is not None and as_uuid(worker_id, "Worker") != principal.id:
            raise Forbidden("Workers can only cancel their own shifts.")
        return acting_worker(db, principal)
    if worker_id is None:
        raise InvalidRequest("worker_id is required when cancelling on behalf of a worker.")
    return tenant_worker(db, principal, worker_id)


# Registration & approval

def register_worker(
    db: Session,
    *,
    name: str,
    email: str,
    password: str,
    user_code: str,
    phone: Optional[str] = None,
    joining_date: Optional[date_type] = None,
    push_token: Optional[str] = None,
) -> WorkerOutcome:
    """Register a worker under a tenant's user_code. The worker starts unapproved."""
    tenant = resolve_tenant(db, user_code)
    if tenant is None:
        raise UnknownTenant()

    email = email.strip().lower()
    if db.query(Worker.id).filter(Worker.email == email).first() is not None:
        raise DuplicateWorker()

    worker = Worker(
        name=name.strip(),
        email=email,
        phone=phone,
        joining_date=joining_date,
        password_hash=get_password_hash(password),
        approved=False,
        user_code=tenant.user_code,
        push_token=push_token,
        created_at=datetime.now(timezone.utc),
    )
    log_activity(worker, "Worker registered")
    db.add(worker)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateWorker()

    logger.info("worker_registered", worker_id=str(worker.id), user_code=tenant.user_code)
    data = {"worker_name": worker.name, "worker_email": worker.email}
    obligations = tenant_obligations(tenant, WORKER_REGISTERED, data)
    obligations.extend(
        worker_obligations(
            worker,
            REGISTRATION_RECEIVED,
            {"tenant_name": tenant.name, "user_code": tenant.user_code},
            channels=(EMAIL,),
        )
    )
    return WorkerOutcome(worker, obligations)


def approve_worker(db: Session, principal: Principal, worker_id) -> WorkerOutcome:
    worker = tenant_worker(db, principal, worker_id)
    if worker.approved:
        return WorkerOutcome(worker)

    worker.approved = True
    log_activity(worker, "Worker approved")
    db.commit()

    logger.info("worker_approved", worker_id=str(worker.id))
    return WorkerOutcome(worker, worker_obligations(worker, WORKER_APPROVED, {}))


def decline_worker(db: Session, principal: Principal, worker_id) -> DeletionOutcome:
    """Reject a pending (or approved) registration. The worker record is removed."""
    worker = tenant_worker(db, principal, worker_id)
    # Built before the row goes away
    obligations = worker_obligations(worker, WORKER_DECLINED, {})
    deleted_id = worker.id

    affected, reopened = _purge_worker(db, worker)
    commit(db)

    logger.info("worker_declined", worker_id=str(deleted_id), affected_jobs=len(affected))
    obligations.extend(reopen_obligations(db, reopened))
    return DeletionOutcome(deleted_id, affected, obligations)


def update_worker(
    db: Session,
    principal: Principal,
    worker_id,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> WorkerOutcome:
    """Edit a worker's contact details. Blank or missing fields keep their current value."""
    worker = tenant_worker(db, principal, worker_id)

    changed = []
    if name and name.strip() and name.strip() != worker.name:
        worker.name = name.strip()
        changed.append("name")
    if email and email.strip():
        email = email.strip().lower()
        if email != worker.email:
            taken = db.query(Worker.id).filter(Worker.email == email, Worker.id != worker.id).first()
            if taken is not None:
                raise DuplicateWorker()
            worker.email = email
            changed.append("email")
    if phone and phone.strip() and phone.strip() != worker.phone:
        worker.phone = phone.strip()
        changed.append("phone")
    if not changed:
        return WorkerOutcome(worker)

    log_activity(worker, "Worker details updated: " + ", ".join(changed))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateWorker()

    logger.info("worker_updated", worker_id=str(worker.id), fields=changed)
    return WorkerOutcome(worker)


# Availability

def mark_availability(db: Session, principal: Principal, date: date_type, shift) -> WorkerOutcome:
    """Declare a (date, shift) slot. Marking an existing slot again changes nothing."""
    worker = acting_worker(db, principal)
    shift_val = shift_value(shift)
    if worker.has_slot(date, shift_val):
        return WorkerOutcome(worker)

    worker.availability.append(
        WorkerAvailability(date=date, shift=shift_val, created_at=datetime.now(timezone.utc))
    )
    log_activity(worker, f"Worker marked availability for {_display_date(date)} ({shift_val})")
    db.commit()

    logger.info("availability_marked", worker_id=str(worker.id), date=date.isoformat(), shift=shift_val)
    data = {
        "worker_name": worker.name,
        "worker_email": worker.email,
        "date": _display_date(date),
        "shift": shift_val,
    }
    return WorkerOutcome(worker, tenant_obligations(resolve_tenant(db, worker.user_code), AVAILABILITY_MARKED, data))


def _jobs_holding(db: Session, worker: Worker, date: Optional[date_type] = None, shift: Optional[str] = None) -> List[Job]:
    """Jobs where the worker is accepted or invited, optionally restricted to one slot; rows are locked."""
    query = db.query(Job).filter(
        or_(
            Job.workers.any(Worker.id == worker.id),
            Job.invited_workers.any(Worker.id == worker.id),
        )
    )
    if date is not None:
        query = query.filter(Job.date == date, Job.shift == shift)
    return query.order_by(Job.date, Job.created_at).with_for_update().all()


def cancel_shift_for_worker(
    db: Session,
    principal: Principal,
    worker_id,
    date: date_type,
    shift,
) -> CancellationOutcome:
    """
    Withdraw a worker's (date, shift) availability.

    The slot is removed and the worker is detached (accepted and invited) from
    every job on that slot. Jobs that reopen are re-announced to the tenant's
    whole worker pool, and the tenant receives a summary notice.
    """
    worker = _subject_worker(db, principal, worker_id)
    shift_val = shift_value(shift)

    slot = next((s for s in worker.availability if s.date == date and s.shift == shift_val), None)
    if slot is None:
        raise SlotNotFound()

    worker.availability.remove(slot)
    jobs = _jobs_holding(db, worker, date, shift_val)
    reopened = [job for job in jobs if release_worker(job, worker)]
    affected_ids = [job.id for job in jobs]
    log_activity(
        worker,
        f"Worker canceled shift on {date.isoformat()} ({shift_val}) and was removed from {len(jobs)} jobs.",
    )
    commit(db)

    logger.info(
        "shift_cancelled",
        worker_id=str(worker.id),
        date=date.isoformat(),
        shift=shift_val,
        affected_jobs=len(affected_ids),
        reopened=len(reopened),
    )
    obligations = reopen_obligations(db, reopened)
    data = {
        "worker_name": worker.name,
        "worker_email": worker.email,
        "date": date.isoformat(),
        "shift": shift_val,
        "affected_count": len(affected_ids),
    }
    obligations.extend(tenant_obligations(resolve_tenant(db, worker.user_code), SHIFT_CANCELLED, data))
    return CancellationOutcome(worker.id, affected_ids, obligations)


# Deletion

def _purge_worker(db: Session, worker: Worker) -> Tuple[List[Dict[str, Any]], List[Job]]:
    """
    Detach a worker from every job and mark the record for deletion.
    Availability and activities go with it.

    Returns:
        (affected job summaries, jobs that reopened)
    """
    affected: List[Dict[str, Any]] = []
    reopened: List[Job] = []
    for job in _jobs_holding(db, worker):
        affected.append(job_payload(job))
        if release_worker(job, worker):
            reopened.append(job)
    # Association rows are gone before the worker row is deleted
    db.flush()
    db.delete(worker)
    return affected, reopened


def delete_worker(db: Session, principal: Principal, worker_id) -> DeletionOutcome:
    """
    Delete a worker of the calling tenant, detaching it from all of its jobs.
    Reopened jobs are re-announced to the remaining workers.
    """
    worker = tenant_worker(db, principal, worker_id)
    deleted_id = worker.id
    data = {"worker_name": worker.name, "worker_email": worker.email}
    user_code = worker.user_code

    affected, reopened = _purge_worker(db, worker)
    commit(db)

    logger.info("worker_deleted", worker_id=str(deleted_id), affected_jobs=len(affected), reopened=len(reopened))
    obligations = reopen_obligations(db, reopened)
    data.update(
        affected_count=len(affected),
        affected_lines="\n".join(f"- {a['title']} on {a['date']} ({a['shift']})" for a in affected),
    )
    obligations.extend(tenant_obligations(resolve_tenant(db, user_code), WORKER_DELETED, data))
    return DeletionOutcome(deleted_id, affected, obligations)


# Messages

def send_message_to_workers(db: Session, principal: Principal, message: str) -> BroadcastOutcome:
    """
    Broadcast a message from the calling tenant to all of its approved workers.

    Every recipient gets a row in its message log. Devices shared by several
    workers are pushed once.
    """
    tenant = require_tenant(db, principal)
    text = (message or "").strip()
    if not text:
        raise InvalidRequest("Message cannot be empty.")

    recipients = [w for w in tenant_workers(db, tenant.user_code) if w.approved]
    if not recipients:
        raise NoWorkersFound("No workers found with this code.")

    sent_at = datetime.now(timezone.utc)
    messages = []
    for worker in recipients:
        entry = WorkerMessage(sender_id=tenant.id, sender_name=tenant.name, message=text, created_at=sent_at)
        worker.messages.append(entry)
        messages.append(entry)
    db.commit()

    logger.info("workers_messaged", user_code=tenant.user_code, recipients=len(recipients))
    return BroadcastOutcome(messages, message_obligations(recipients, tenant.name, text))


# Read models

def pending_workers(db: Session, principal: Principal) -> List[Worker]:
    tenant = require_tenant(db, principal)
    return (
        db.query(Worker)
        .filter(Worker.user_code == tenant.user_code, Worker.approved.is_(False))
        .order_by(Worker.created_at)
        .all()
    )


def approved_workers(db: Session, principal: Principal) -> List[Worker]:
    tenant = require_tenant(db, principal)
    return (
        db.query(Worker)
        .filter(Worker.user_code == tenant.user_code, Worker.approved.is_(True))
        .order_by(Worker.name)
        .all()
    )


def available_workers(db: Session, principal: Principal, date: date_type, shift) -> List[Worker]:
    """Approved workers of the tenant with the given slot in their availability."""
    tenant = require_tenant(db, principal)
    shift_val = shift_value(shift)
    return (
        db.query(Worker)
        .join(WorkerAvailability, WorkerAvailability.worker_id == Worker.id)
        .filter(
            Worker.user_code == tenant.user_code,
            Worker.approved.is_(True),
            WorkerAvailability.date == date,
            WorkerAvailability.shift == shift_val,
        )
        .order_by(Worker.name)
        .all()
    )


def worker_activities(db: Session, principal: Principal, limit: int = 50) -> List[WorkerActivity]:
    worker = acting_worker(db, principal)
    return (
        db.query(WorkerActivity)
        .filter(WorkerActivity.worker_id == worker.id)
        .order_by(WorkerActivity.timestamp.desc())
        .limit(limit)
        .all()
    )


def worker_messages(db: Session, principal: Principal, limit: int = 50) -> List[WorkerMessage]:
    worker = acting_worker(db, principal)
    return (
        db.query(WorkerMessage)
        .filter(WorkerMessage.worker_id == worker.id)
        .order_by(WorkerMessage.created_at.desc())
        .limit(limit)
        .all()
    )
