"""SQLAlchemy ORM models for the print queue.

Two tables: users, who accumulate printer time, and print jobs, which move
through the review/queue/print lifecycle. The one-active-job and
single-printer rules are backed by partial unique indexes so concurrent
writers cannot break them.
"""

import enum
from datetime import datetime
from typing import Optional, List
from uuid import uuid4

from sqlalchemy import (
    String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Enum, Index, text
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column

from printqueue.utils import utcnow


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ============================================================================
# Enums
# ============================================================================

class UserRole(str, enum.Enum):
    """User roles."""
    USER = "user"
    ADMIN = "admin"


class JobStatus(str, enum.Enum):
    """Print job status."""
    PENDING_REVIEW = "pending_review"  # Submitted, waiting for an admin
    QUEUED = "queued"  # Approved and priced, waiting for the printer
    PRINTING = "printing"  # On the printer
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        """Check if the status counts towards the one-active-job rule."""
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        """Check if no further transition is possible."""
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = (JobStatus.PENDING_REVIEW, JobStatus.QUEUED, JobStatus.PRINTING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.REJECTED, JobStatus.FAILED)

_ACTIVE_WHERE = "status IN ('pending_review', 'queued', 'printing')"
_PRINTING_WHERE = "status = 'printing'"


def _enum_values(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


# ============================================================================
# Core Models
# ============================================================================

class User(Base):
    """User account with accumulated printer time."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, values_callable=_enum_values, native_enum=False, length=20),
        default=UserRole.USER,
    )
    accumulated_print_time: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)  # hours
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    print_jobs: Mapped[List["PrintJob"]] = relationship("PrintJob", back_populates="user")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "role": self.role.value,
            "accumulated_print_time": self.accumulated_print_time,
            "created_at": self.created_at.isoformat(),
        }


class PrintJob(Base):
    """A print request moving through review, queue and printer."""
    __tablename__ = "print_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Model file
    stl_file: Mapped[Optional[str]] = mapped_column(String(500))  # Stored file reference
    stl_link: Mapped[Optional[str]] = mapped_column(String(1000))  # External link

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=JobStatus.PENDING_REVIEW,
        nullable=False,
    )
    admin_notes: Mapped[Optional[str]] = mapped_column(Text)

    # Pricing and timing
    raw_cost: Mapped[Optional[float]] = mapped_column(Float)
    estimated_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    actual_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    receipt_number: Mapped[Optional[str]] = mapped_column(String(32), unique=True)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Scheduling
    priority_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    approved_on: Mapped[Optional[datetime]] = mapped_column(DateTime)
    started_on: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_on: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="print_jobs")

    __table_args__ = (
        Index("ix_print_jobs_status_score", "status", "priority_score"),
        Index(
            "uq_print_jobs_one_active_per_user",
            "user_id",
            unique=True,
            sqlite_where=text(_ACTIVE_WHERE),
            postgresql_where=text(_ACTIVE_WHERE),
        ),
        Index(
            "uq_print_jobs_single_printing",
            "status",
            unique=True,
            sqlite_where=text(_PRINTING_WHERE),
            postgresql_where=text(_PRINTING_WHERE),
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "project_name": self.project_name,
            "status": self.status.value,
            "stl_file": self.stl_file,
            "stl_link": self.stl_link,
            "admin_notes": self.admin_notes,
            "raw_cost": self.raw_cost,
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "actual_duration_minutes": self.actual_duration_minutes,
            "receipt_number": self.receipt_number,
            "is_paid": self.is_paid,
            "priority_score": self.priority_score,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "approved_on": self.approved_on.isoformat() if self.approved_on else None,
            "started_on": self.started_on.isoformat() if self.started_on else None,
            "completed_on": self.completed_on.isoformat() if self.completed_on else None,
        }
