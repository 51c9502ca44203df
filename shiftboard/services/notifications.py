"""
Notification obligations and their dispatch.

Core services never talk to a transport. They return a list of Obligation
values; the router hands that list to NotificationDispatcher after the state
change has been committed. The dispatcher records every obligation in the
notifications outbox and delivers it best-effort.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Notification, Worker, Job
from .delivery import SmtpEmailSender, ExpoPushClient
from .errors import NotificationDispatchFailed
from .tenants import Tenant

logger = structlog.get_logger(__name__)

EMAIL = "email"
PUSH = "push"

RECIPIENT_WORKER = "worker"
RECIPIENT_TENANT = "tenant"

JOB_INVITATION = "job_invitation"
JOB_AVAILABLE = "job_available"
JOB_ACCEPTED = "job_accepted"
JOB_DECLINED = "job_declined"
JOB_REMOVED = "job_removed"
SHIFT_CANCELLED = "shift_cancelled"
WORKER_DELETED = "worker_deleted"
WORKER_REGISTERED = "worker_registered"
REGISTRATION_RECEIVED = "registration_received"
WORKER_APPROVED = "worker_approved"
WORKER_DECLINED = "worker_declined"
AVAILABILITY_MARKED = "availability_marked"
WORKER_MESSAGE = "worker_message"

_SIGN_OFF = "\n\nBest regards,\nThe Shiftboard Team"

TEMPLATES: Dict[str, Dict[str, str]] = {
    JOB_INVITATION: {
        "subject": "You've been invited to a job!",
        "body": (
            "Hello {name},\n\nYour company has just posted a shift that you may be interested in: "
            "\"{title}\" on {date} ({shift}).\n\nPlease check your app for more details. "
            "Remember, the first person to accept gets the shift!"
        ),
        "push": "You have been invited to a new job: {title}",
    },
    JOB_AVAILABLE: {
        "subject": "Job Now Available - {title}",
        "body": (
            "Hello {name},\n\nA job that matches your company is now available for you to accept:\n\n"
            "Job Title: {title}\nDate: {date}\nShift: {shift}\n\n"
            "Please log in to view and accept the job if you're interested."
        ),
        "push": "Job \"{title}\" on {date} ({shift}) is now available!",
    },
    JOB_ACCEPTED: {
        "subject": "Job Accepted Notification",
        "body": "Hello {name},\n\n{worker_name} has accepted the job: {title}.\nDate: {date}\nShift: {shift}",
        "push": "{worker_name} has accepted the job: {title}.",
    },
    JOB_DECLINED: {
        "subject": "Job Declined Notification",
        "body": (
            "Hello {name},\n\n{worker_name} has declined the job: {title}.\nDate: {date}\nShift: {shift}\n\n"
            "You may want to invite more workers if needed."
        ),
        "push": "{worker_name} has declined the job: {title}.",
    },
    JOB_REMOVED: {
        "subject": "Job Update - {worker_name} Removed from Job",
        "body": "Hello {name},\n\n{worker_name} has removed themselves from the job: {title}.\nDate: {date}\nShift: {shift}",
        "push": "{worker_name} has removed themselves from the job: {title}.",
    },
    SHIFT_CANCELLED: {
        "subject": "Shift Cancellation Notice",
        "body": (
            "Hello {name},\n\nWorker {worker_name} ({worker_email}) has canceled their shift on {date} ({shift}).\n\n"
            "Affected Jobs: {affected_count}\n\nPlease take the necessary actions."
        ),
        "push": "{worker_name} has canceled their availability for {date} ({shift}).",
    },
    WORKER_DELETED: {
        "subject": "Worker Deletion Notification - {worker_name}",
        "body": (
            "Hello {name},\n\nThe worker \"{worker_name}\" ({worker_email}) has been deleted from your account.\n\n"
            "Affected Jobs: {affected_count}\n{affected_lines}\n\nThe jobs have been updated accordingly."
        ),
        "push": "{worker_name} was deleted. {affected_count} job(s) updated.",
    },
    WORKER_REGISTERED: {
        "subject": "New Worker Registration - {worker_name}",
        "body": "Hello {name},\n\n{worker_name} ({worker_email}) has requested to join and is awaiting your approval.",
        "push": "{worker_name} has requested to join.",
    },
    REGISTRATION_RECEIVED: {
        "subject": "Welcome to {tenant_name}",
        "body": (
            "Hello {name},\n\nYour registration under code {user_code} has been received. "
            "You will be able to log in once it has been approved."
        ),
        "push": "Your registration has been received.",
    },
    WORKER_APPROVED: {
        "subject": "Your Worker Registration has been Approved",
        "body": "Hello {name},\n\nCongratulations! Your registration has been approved. You can now log in.",
        "push": "Congratulations! You have been approved.",
    },
    WORKER_DECLINED: {
        "subject": "Your Worker Registration has been Declined",
        "body": "Hello {name},\n\nWe regret to inform you that your request has been declined.",
        "push": "We regret to inform you that your request has been declined.",
    },
    AVAILABILITY_MARKED: {
        "subject": "New Shift Availability Notification",
        "body": (
            "Hello {name},\n\nWorker {worker_name} ({worker_email}) has marked themselves available for "
            "{date} ({shift}).\n\nThey may now accept or decline jobs that match this availability."
        ),
        "push": "{worker_name} is available on {date} for the {shift} shift.",
    },
    WORKER_MESSAGE: {
        "subject": "New message from {sender_name}",
        "body": "Hello {name},\n\n{sender_name} sent you a message:\n\n{message}",
        "push": "New message from {sender_name}: {message}",
    },
}


class _Blank(dict):
    def __missing__(self, key):
        return ""


@dataclass(frozen=True)
class Obligation:
    """Instruction to notify one recipient through one channel."""
    recipient_type: str
    recipient_id: str
    channel: str
    template: str
    address: str
    data: Dict[str, Any] = field(default_factory=dict)
    recipient_name: Optional[str] = None

    def render(self) -> Tuple[str, str, str]:
        tpl = TEMPLATES[self.template]
        values = _Blank(self.data)
        values.setdefault("name", self.recipient_name or "there")
        return (
            tpl["subject"].format_map(values),
            (tpl["body"] + _SIGN_OFF).format_map(values),
            tpl["push"].format_map(values),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_type": self.recipient_type,
            "recipient_id": self.recipient_id,
            "channel": self.channel,
            "template": self.template,
            "data": dict(self.data),
        }


def job_payload(job: Job) -> Dict[str, Any]:
    return {
        "job_id": str(job.id),
        "title": job.title,
        "date": job.date.isoformat(),
        "shift": job.shift,
    }


def worker_obligations(
    worker: Worker,
    template: str,
    data: Dict[str, Any],
    channels: Sequence[str] = (EMAIL, PUSH),
) -> List[Obligation]:
    """Email and (when the worker has a device token) push obligations for one worker."""
    out: List[Obligation] = []
    if EMAIL in channels and worker.email:
        out.append(Obligation(RECIPIENT_WORKER, str(worker.id), EMAIL, template, worker.email, data, worker.name))
    if PUSH in channels and worker.push_token:
        out.append(Obligation(RECIPIENT_WORKER, str(worker.id), PUSH, template, worker.push_token, data, worker.name))
    return out


def tenant_obligations(tenant: Optional[Tenant], template: str, data: Dict[str, Any]) -> List[Obligation]:
    """Tenant-directed notice: one email, plus one push if the tenant registered a device."""
    if tenant is None:
        logger.info("tenant_notice_skipped", template=template, reason="tenant not found")
        return []
    out = [Obligation(RECIPIENT_TENANT, str(tenant.id), EMAIL, template, tenant.email, data, tenant.name)]
    if tenant.push_token:
        out.append(Obligation(RECIPIENT_TENANT, str(tenant.id), PUSH, template, tenant.push_token, data, tenant.name))
    return out


def invitation_obligations(workers: Iterable[Worker], job: Job) -> List[Obligation]:
    """
    One email per invited worker and one push per distinct device token.
    Several workers can share a device; each device is only pushed once.
    """
    data = job_payload(job)
    out: List[Obligation] = []
    notified_devices = set()
    for worker in workers:
        out.extend(worker_obligations(worker, JOB_INVITATION, data, channels=(EMAIL,)))
        if worker.push_token and worker.push_token not in notified_devices:
            notified_devices.add(worker.push_token)
            out.extend(worker_obligations(worker, JOB_INVITATION, data, channels=(PUSH,)))
    return out


def job_available_obligations(workers: Iterable[Worker], job: Job) -> List[Obligation]:
    """Tenant-wide re-announcement of a job that went from filled back to open."""
    data = job_payload(job)
    out: List[Obligation] = []
    for worker in workers:
        out.extend(worker_obligations(worker, JOB_AVAILABLE, data))
    return out


def message_obligations(workers: Iterable[Worker], sender_name: str, message: str) -> List[Obligation]:
    """Push a tenant broadcast to every distinct device of the given workers."""
    data = {"sender_name": sender_name, "message": message}
    out: List[Obligation] = []
    notified_devices = set()
    for worker in workers:
        if worker.push_token and worker.push_token not in notified_devices:
            notified_devices.add(worker.push_token)
            out.extend(worker_obligations(worker, WORKER_MESSAGE, data, channels=(PUSH,)))
    return out


class NotificationDispatcher:
    """
    Records obligations in the outbox and delivers them.
    Delivery problems are logged and stored on the outbox row, never raised.
    """

    def __init__(self, email_sender=None, push_client=None):
        self.email_sender = email_sender or SmtpEmailSender()
        self.push_client = push_client or ExpoPushClient()

    def dispatch(self, db: Session, obligations: Sequence[Obligation]) -> List[Notification]:
        if not obligations:
            return []

        pairs: List[Tuple[Obligation, Notification]] = []
        try:
            for ob in obligations:
                subject, _, message = ob.render()
                row = Notification(
                    recipient_type=ob.recipient_type,
                    recipient_id=_as_uuid(ob.recipient_id),
                    channel=ob.channel,
                    template_key=ob.template,
                    address=ob.address,
                    payload_json={"subject": subject, "message": message, "data": dict(ob.data)},
                    status="pending",
                )
                db.add(row)
                pairs.append((ob, row))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("notification_outbox_failed", error=str(e), count=len(obligations))
            return []

        self._deliver_emails([p for p in pairs if p[0].channel == EMAIL])
        self._deliver_pushes([p for p in pairs if p[0].channel == PUSH])

        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("notification_status_update_failed", error=str(e))
        return [row for _, row in pairs]

    def _deliver_emails(self, pairs: List[Tuple[Obligation, Notification]]) -> None:
        if not pairs:
            return
        if not settings.enable_email:
            _mark_all(pairs, "skipped", "email channel disabled")
            return
        if not self.email_sender.is_configured:
            _mark_all(pairs, "skipped", "SMTP not configured")
            return
        for ob, row in pairs:
            subject, body, _ = ob.render()
            try:
                self.email_sender.send(ob.address, subject, body)
            except NotificationDispatchFailed as e:
                _mark(row, "failed", e.message)
                logger.warning(
                    "notification_dispatch_failed",
                    channel=EMAIL, template=ob.template, recipient_id=ob.recipient_id, error=e.message,
                )
            else:
                _mark(row, "sent")

    def _deliver_pushes(self, pairs: List[Tuple[Obligation, Notification]]) -> None:
        if not pairs:
            return
        if not settings.enable_push:
            _mark_all(pairs, "skipped", "push channel disabled")
            return
        if not self.push_client.is_configured:
            _mark_all(pairs, "skipped", "push not configured")
            return

        size = max(1, settings.push_chunk_size)
        for start in range(0, len(pairs), size):
            chunk = pairs[start:start + size]
            messages = []
            for ob, _ in chunk:
                subject, _, push_body = ob.render()
                messages.append({
                    "to": ob.address,
                    "sound": "default",
                    "title": subject,
                    "body": push_body,
                    "data": {**ob.data, "template": ob.template, "messageContent": push_body},
                })
            try:
                tickets = self.push_client.send(messages)
            except NotificationDispatchFailed as e:
                _mark_all(chunk, "failed", e.message)
                logger.warning("notification_dispatch_failed", channel=PUSH, count=len(chunk), error=e.message)
                continue

            for index, (ob, row) in enumerate(chunk):
                ticket = tickets[index] if index < len(tickets) else {}
                if ticket.get("status") == "error":
                    _mark(row, "failed", ticket.get("message") or "push ticket error")
                    logger.warning(
                        "notification_dispatch_failed",
                        channel=PUSH, template=ob.template, recipient_id=ob.recipient_id,
                        error=ticket.get("message"),
                    )
                else:
                    _mark(row, "sent")


def _mark(row: Notification, status: str, error: Optional[str] = None) -> None:
    row.status = status
    row.error_message = error
    if status == "sent":
        row.sent_at = datetime.now(timezone.utc)


def _mark_all(pairs, status: str, error: Optional[str] = None) -> None:
    for _, row in pairs:
        _mark(row, status, error)


def _as_uuid(value):
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()
