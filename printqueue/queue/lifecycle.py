"""Print job lifecycle.

    pending_review -> queued -> printing -> completed
    pending_review -> rejected
    printing -> failed

Every transition reads the job, checks it against the transition table,
then writes with an UPDATE guarded by the status it read. If another writer
moved the job in between, the guarded write matches nothing and the
transition fails with StateConflictError instead of overwriting.
"""

import inspect
import math
import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from printqueue.config import Settings, get_settings
from printqueue.db import get_session
from printqueue.db.models import PrintJob, JobStatus
from printqueue.db.repositories.jobs import PrintJobRepository
from printqueue.db.repositories.users import UserRepository
from printqueue.errors import (
    AdmissionConflictError,
    DependencyError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from printqueue.queue.admission import AdmissionGuard
from printqueue.queue.priority import PriorityRecalculator, RecalculationReport
from printqueue.utils import get_logger, utcnow

logger = get_logger("queue.lifecycle")


class JobAction(str, Enum):
    """Transitions an existing job can undergo."""
    APPROVE = "approve"
    REJECT = "reject"
    START = "start"
    COMPLETE = "complete"
    FAIL = "fail"


# action -> (required status, resulting status)
TRANSITIONS: Dict[JobAction, Tuple[JobStatus, JobStatus]] = {
    JobAction.APPROVE: (JobStatus.PENDING_REVIEW, JobStatus.QUEUED),
    JobAction.REJECT: (JobStatus.PENDING_REVIEW, JobStatus.REJECTED),
    JobAction.START: (JobStatus.QUEUED, JobStatus.PRINTING),
    JobAction.COMPLETE: (JobStatus.PRINTING, JobStatus.COMPLETED),
    JobAction.FAIL: (JobStatus.PRINTING, JobStatus.FAILED),
}

# Payment can be recorded once the job is priced, and kept after completion
PAYABLE_STATUSES = (JobStatus.QUEUED, JobStatus.PRINTING, JobStatus.COMPLETED)


def allowed_actions(status: JobStatus) -> List[JobAction]:
    """List the actions permitted from a status."""
    return [action for action, (source, _) in TRANSITIONS.items() if source == status]


def check_transition(action: JobAction, current: JobStatus, job_id: Optional[str] = None) -> JobStatus:
    """
    Validate a transition against the table.

    Returns:
        The status the job moves to

    Raises:
        StateConflictError: If the action is not allowed from ``current``
    """
    source, target = TRANSITIONS[action]
    if current != source:
        if current.is_terminal:
            message = f"Cannot {action.value} a job that is already {current.value}"
        else:
            message = f"Cannot {action.value} a job that is {current.value} (must be {source.value})"
        raise StateConflictError(message, job_id=job_id, current_status=current.value)
    return target


def generate_receipt_number(prefix: str, when: datetime) -> str:
    """Build a receipt number like ``3DNTZ-20250114-0427``."""
    return f"{prefix}-{when:%Y%m%d}-{secrets.randbelow(10000):04d}"


def _require_positive_int(name: str, value: Any) -> int:
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or value != int(value)
    ):
        raise ValidationError(f"{name} must be a whole number of minutes, got {value!r}")
    if value <= 0:
        raise ValidationError(f"{name} must be greater than zero")
    return int(value)


def _require_positive_amount(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number, got {value!r}")
    if value <= 0:
        raise ValidationError(f"{name} must be greater than zero")
    return float(value)


FileReleasedCallback = Callable[[PrintJob, str], Any]


class JobLifecycle:
    """
    Performs job transitions and their side effects.

    Side effects:
    - approve assigns a receipt number and rescores the queue
    - complete adds the print time to the owner and rescores the queue
    - complete and fail clear the stored model file and signal its release

    Rescoring happens after the transition has committed. If it fails the
    error is logged and the transition still stands.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        recalculator: Optional[PriorityRecalculator] = None,
        admission: Optional[AdmissionGuard] = None,
        settings: Optional[Settings] = None,
        on_file_released: Optional[FileReleasedCallback] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the lifecycle.

        Args:
            session_factory: Session factory (defaults to the module-wide one)
            recalculator: Queue rescoring engine
            admission: One-active-job guard
            settings: Receipt and scoring settings
            on_file_released: Callback after a job's model file is cleared;
                may be a coroutine function
            clock: Source of transition timestamps
        """
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.recalculator = recalculator or PriorityRecalculator(session_factory, self.settings)
        self.admission = admission or AdmissionGuard(session_factory)
        self.on_file_released = on_file_released
        self.clock = clock

    @asynccontextmanager
    async def _transaction(
        self,
        action: str,
        job_id: Optional[str] = None,
        on_integrity_error: Optional[Callable[[], Exception]] = None,
    ) -> AsyncGenerator[AsyncSession, None]:
        """One all-or-nothing unit of work with store errors translated."""
        try:
            async with get_session(self.session_factory) as session:
                yield session
        except IntegrityError as e:
            if on_integrity_error is not None:
                raise on_integrity_error() from e
            logger.error(f"Integrity error during {action} of job {job_id}: {e}")
            raise DependencyError(f"Could not {action} job {job_id}: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Database error during {action} of job {job_id}: {e}")
            raise DependencyError(f"Could not {action} job {job_id}: {e}") from e

    async def _load(self, jobs: PrintJobRepository, job_id: str) -> PrintJob:
        job = await jobs.get_by_id(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found", "That print request no longer exists.")
        return job

    async def _apply(
        self,
        jobs: PrintJobRepository,
        action: JobAction,
        job: PrintJob,
        **values,
    ) -> PrintJob:
        """Check the table, then write with a guard on the status we read."""
        target = check_transition(action, job.status, job.id)
        if not await jobs.transition(job.id, job.status, status=target, **values):
            raise StateConflictError(
                f"Job {job.id} changed while trying to {action.value} it",
                job_id=job.id,
            )
        return await self._load(jobs, job.id)

    async def get_job(self, job_id: str) -> PrintJob:
        """Get a job by ID."""
        async with self._transaction("load", job_id) as session:
            return await self._load(PrintJobRepository(session), job_id)

    # =========================================================================
    # Transitions
    # =========================================================================

    async def submit(
        self,
        user_id: str,
        project_name: str,
        stl_file: Optional[str] = None,
        stl_link: Optional[str] = None,
    ) -> PrintJob:
        """
        Create a new print request awaiting review.

        Raises:
            ValidationError: If the project name is blank
            NotFoundError: If the user does not exist
            AdmissionConflictError: If the user already has an active job
        """
        project_name = (project_name or "").strip()
        if not project_name:
            raise ValidationError("Project name is required")

        async with self._transaction(
            "submit",
            on_integrity_error=lambda: AdmissionConflictError(user_id),
        ) as session:
            if not await UserRepository(session).exists(user_id):
                raise NotFoundError(f"User {user_id} not found", "Unknown user.")
            await self.admission.ensure_can_submit(user_id, session=session)
            job = await PrintJobRepository(session).create_job(
                user_id=user_id,
                project_name=project_name,
                stl_file=stl_file,
                stl_link=stl_link,
            )

        logger.info(f"Job {job.id} submitted by user {user_id}: {project_name}")
        return job

    async def approve(
        self,
        job_id: str,
        raw_cost: float,
        estimated_duration_minutes: int,
        admin_notes: Optional[str] = None,
        is_paid: bool = False,
    ) -> PrintJob:
        """
        Price a pending job and put it in the queue.

        Args:
            job_id: Job to approve
            raw_cost: Price of the print, greater than zero
            estimated_duration_minutes: Expected print time, greater than zero
            admin_notes: Optional note for the user
            is_paid: Whether the user has already paid

        Raises:
            StateConflictError: If the job is not pending review, checked
                before the pricing
            ValidationError: If cost or duration is not positive and finite
        """
        now = self.clock()

        async with self._transaction(JobAction.APPROVE.value, job_id) as session:
            jobs = PrintJobRepository(session)
            job = await self._load(jobs, job_id)
            check_transition(JobAction.APPROVE, job.status, job_id)
            raw_cost = _require_positive_amount("Cost", raw_cost)
            estimated = _require_positive_int("Estimated duration", estimated_duration_minutes)
            receipt_number = await self._draw_receipt_number(jobs, now)
            job = await self._apply(
                jobs,
                JobAction.APPROVE,
                job,
                raw_cost=raw_cost,
                estimated_duration_minutes=estimated,
                admin_notes=admin_notes,
                is_paid=bool(is_paid),
                receipt_number=receipt_number,
                approved_on=now,
            )

        logger.info(
            f"Job {job_id} approved: receipt {receipt_number}, "
            f"cost {raw_cost:.2f}, {estimated} min"
        )
        await self._rescore(JobAction.APPROVE, job)
        return job

    async def _draw_receipt_number(self, jobs: PrintJobRepository, when: datetime) -> str:
        for _ in range(self.settings.receipt_max_attempts):
            candidate = generate_receipt_number(self.settings.receipt_prefix, when)
            if not await jobs.receipt_exists(candidate):
                return candidate
            logger.warning(f"Receipt number {candidate} already taken, drawing another")
        raise DependencyError(
            f"No free receipt number after {self.settings.receipt_max_attempts} attempts"
        )

    async def reject(self, job_id: str, admin_notes: Optional[str] = None) -> PrintJob:
        """Turn down a pending job."""
        async with self._transaction(JobAction.REJECT.value, job_id) as session:
            jobs = PrintJobRepository(session)
            job = await self._load(jobs, job_id)
            job = await self._apply(jobs, JobAction.REJECT, job, admin_notes=admin_notes)

        logger.info(f"Job {job_id} rejected")
        return job

    async def start(self, job_id: str) -> PrintJob:
        """
        Put a queued job on the printer.

        Raises:
            StateConflictError: If the job is not queued or another job is
                already printing
        """
        def printer_busy() -> StateConflictError:
            return StateConflictError(
                "Another job is already printing",
                job_id=job_id,
                user_message="The printer is busy with another job. Finish it before starting a new one.",
            )

        async with self._transaction(
            JobAction.START.value, job_id, on_integrity_error=printer_busy
        ) as session:
            jobs = PrintJobRepository(session)
            job = await self._load(jobs, job_id)
            check_transition(JobAction.START, job.status, job_id)

            current = await jobs.get_printing()
            if current is not None:
                raise printer_busy()

            job = await self._apply(jobs, JobAction.START, job, started_on=self.clock())

        logger.info(f"Job {job_id} started printing")
        return job

    async def complete(
        self,
        job_id: str,
        actual_duration_minutes: int,
        is_paid: Optional[bool] = None,
    ) -> PrintJob:
        """
        Finish a print and charge its time to the owner.

        Args:
            job_id: Job on the printer
            actual_duration_minutes: Real print time, greater than zero
            is_paid: New payment status; None leaves it unchanged
        """
        async with self._transaction(JobAction.COMPLETE.value, job_id) as session:
            jobs = PrintJobRepository(session)
            job = await self._load(jobs, job_id)
            check_transition(JobAction.COMPLETE, job.status, job_id)
            actual = _require_positive_int("Actual duration", actual_duration_minutes)

            values = {
                "actual_duration_minutes": actual,
                "completed_on": self.clock(),
                "stl_file": None,
            }
            if is_paid is not None:
                values["is_paid"] = bool(is_paid)

            released = job.stl_file
            job = await self._apply(jobs, JobAction.COMPLETE, job, **values)
            await UserRepository(session).add_print_time(job.user_id, actual / 60)

        logger.info(f"Job {job_id} completed in {actual} min; {actual / 60:.2f}h added to user {job.user_id}")
        await self._release_file(job, released)
        await self._rescore(JobAction.COMPLETE, job)
        return job

    async def fail(self, job_id: str, admin_notes: Optional[str] = None) -> PrintJob:
        """
        Mark a print as failed.

        Costs and durations are zeroed and the owner's print time is left
        alone, so a failed print does not count against the user.
        """
        async with self._transaction(JobAction.FAIL.value, job_id) as session:
            jobs = PrintJobRepository(session)
            job = await self._load(jobs, job_id)
            released = job.stl_file
            job = await self._apply(
                jobs,
                JobAction.FAIL,
                job,
                estimated_duration_minutes=0,
                actual_duration_minutes=0,
                raw_cost=0.0,
                is_paid=False,
                admin_notes=admin_notes,
                stl_file=None,
            )

        logger.warning(f"Job {job_id} failed: {admin_notes or 'no notes'}")
        await self._release_file(job, released)
        return job

    async def set_paid(self, job_id: str, is_paid: bool) -> PrintJob:
        """Record whether a priced job has been paid for."""
        async with self._transaction("update payment of", job_id) as session:
            jobs = PrintJobRepository(session)
            job = await self._load(jobs, job_id)
            if job.status not in PAYABLE_STATUSES:
                raise StateConflictError(
                    f"Cannot change payment of a job that is {job.status.value}",
                    job_id=job_id,
                    current_status=job.status.value,
                )
            if not await jobs.transition(job_id, job.status, is_paid=bool(is_paid)):
                raise StateConflictError(f"Job {job_id} changed while updating payment", job_id=job_id)
            job = await self._load(jobs, job_id)

        logger.info(f"Job {job_id} marked as {'paid' if is_paid else 'unpaid'}")
        return job

    # =========================================================================
    # Side effects
    # =========================================================================

    async def _rescore(self, action: JobAction, job: PrintJob) -> Optional[RecalculationReport]:
        """Rescore the queue after a committed transition, never raising."""
        try:
            report = await self.recalculator.recalculate_all()
        except Exception:
            logger.exception(f"Priority recalculation after {action.value} of job {job.id} failed")
            return None

        if not report.ok:
            logger.warning(
                f"Priority recalculation after {action.value} of job {job.id} "
                f"left {len(report.failed)} jobs unscored"
            )
        if job.id in report.updated:
            job.priority_score = report.updated[job.id]
        return report

    async def _release_file(self, job: PrintJob, file_ref: Optional[str]) -> None:
        if not file_ref or self.on_file_released is None:
            return
        try:
            result = self.on_file_released(job, file_ref)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"File release callback failed for job {job.id} ({file_ref})")
