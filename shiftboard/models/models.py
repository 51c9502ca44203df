import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class Shift(str, enum.Enum):
    AM = "AM"
    PM = "PM"


# Open invitations. Backs both Job.invited_workers and Worker.invited_jobs
job_invitations = Table(
    "job_invitations",
    Base.metadata,
    Column("job_id", UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), primary_key=True),
    Column("worker_id", UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("job_id", "worker_id", name="uq_job_invitation"),
)

# Workers who accepted a job
job_assignments = Table(
    "job_assignments",
    Base.metadata,
    Column("job_id", UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), primary_key=True),
    Column("worker_id", UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("job_id", "worker_id", name="uq_job_assignment"),
)


# Tenants

class User(Base):
    """Individual tenant account; owns workers and jobs through user_code"""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    user_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    push_token: Mapped[Optional[str]] = mapped_column(String(255))  # Expo push token
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class Company(Base):
    """Company tenant account; comp_code plays the role of user_code"""
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    address: Mapped[Optional[str]] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    postcode: Mapped[Optional[str]] = mapped_column(String(20))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    comp_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    push_token: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


# Workers

class Worker(Base):
    """Worker registered under a tenant's user_code"""
    __tablename__ = "workers"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    joining_date: Mapped[Optional[Date]] = mapped_column(Date)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    user_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    push_token: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    availability = relationship(
        "WorkerAvailability", back_populates="worker", cascade="all, delete-orphan",
        order_by="WorkerAvailability.date",
    )
    activities = relationship(
        "WorkerActivity", back_populates="worker", cascade="all, delete-orphan",
        order_by="WorkerActivity.timestamp",
    )
    messages = relationship(
        "WorkerMessage", back_populates="worker", cascade="all, delete-orphan",
        order_by="WorkerMessage.created_at",
    )
    invited_jobs = relationship("Job", secondary=job_invitations, back_populates="invited_workers")
    accepted_jobs = relationship("Job", secondary=job_assignments, back_populates="workers")

    def has_slot(self, date_val, shift) -> bool:
        shift_val = Shift(shift).value
        return any(s.date == date_val and s.shift == shift_val for s in self.availability)


class WorkerAvailability(Base):
    """A (date, shift) slot a worker declared"""
    __tablename__ = "worker_availability"

    id: Mapped[uuid.UUID] = uuid_pk()
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    date: Mapped[Date] = mapped_column(Date, nullable=False)
    shift: Mapped[str] = mapped_column(String(2), nullable=False)  # AM|PM
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    worker = relationship("Worker", back_populates="availability")

    __table_args__ = (
        UniqueConstraint("worker_id", "date", "shift", name="uq_worker_slot"),
        Index("idx_availability_date_shift", "date", "shift"),
    )


class WorkerActivity(Base):
    """Append-only activity log for a worker"""
    __tablename__ = "worker_activities"

    id: Mapped[uuid.UUID] = uuid_pk()
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    worker = relationship("Worker", back_populates="activities")


class WorkerMessage(Base):
    """Broadcast message a tenant sent to its workers; one row per recipient"""
    __tablename__ = "worker_messages"

    id: Mapped[uuid.UUID] = uuid_pk()
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)  # user or company id
    sender_name: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    worker = relationship("Worker", back_populates="messages")


# Jobs

class Job(Base):
    """Shift-based job posted by a tenant"""
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = uuid_pk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[Date] = mapped_column(Date, nullable=False)
    shift: Mapped[str] = mapped_column(String(2), nullable=False)  # AM|PM
    workers_required: Mapped[int] = mapped_column(Integer, nullable=False)
    job_status: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)  # True when filled
    user_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    workers = relationship("Worker", secondary=job_assignments, back_populates="accepted_jobs")
    invited_workers = relationship("Worker", secondary=job_invitations, back_populates="invited_jobs")

    # Lost updates on a job raise StaleDataError at flush
    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index("idx_jobs_user_code_date_shift", "user_code", "date", "shift"),
    )


# Notifications

class Notification(Base):
    """Outbox record for every notification obligation (push and email)"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    recipient_type: Mapped[str] = mapped_column(String(20), nullable=False)  # worker|tenant
    recipient_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)  # push|email
    template_key: Mapped[Optional[str]] = mapped_column(String(100))
    address: Mapped[Optional[str]] = mapped_column(String(255))  # email address or device token
    payload_json: Mapped[Optional[dict]] = mapped_column(JSON)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|sent|failed|skipped
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index("idx_notifications_recipient_status", "recipient_id", "status"),
        Index("idx_notifications_created", "created_at"),
    )
