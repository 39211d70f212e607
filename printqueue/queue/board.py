"""Read-side views of the queue: ordering, statistics and print progress."""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from printqueue.db import get_session
from printqueue.db.models import PrintJob, JobStatus
from printqueue.db.repositories.jobs import PrintJobRepository
from printqueue.errors import DependencyError
from printqueue.utils import get_logger, utcnow

logger = get_logger("queue.board")


@dataclass
class QueueEntry:
    """A queued job with its position and owner."""
    position: int
    job: PrintJob
    username: str
    accumulated_print_time: float


@dataclass
class PrintProgress:
    """Estimated progress of the job on the printer."""
    progress_percent: float
    remaining_minutes: int


@dataclass
class QueueStats:
    """Queue counts and waiting time."""
    total_queued: int
    total_printing: int
    total_pending_review: int
    estimated_queue_minutes: int
    printing_remaining_minutes: int = 0

    @property
    def total_wait_minutes(self) -> int:
        """Time until the printer clears the whole queue."""
        return self.estimated_queue_minutes + self.printing_remaining_minutes


def print_progress(
    estimated_minutes: Optional[int],
    started_on: Optional[datetime],
    now: Optional[datetime] = None,
) -> PrintProgress:
    """
    Estimate how far along a print is from its start time.

    Progress is clamped to 0-100; a job with no estimate or start time
    reports no progress.
    """
    if not estimated_minutes or estimated_minutes <= 0 or started_on is None:
        return PrintProgress(progress_percent=0.0, remaining_minutes=0)

    now = now or utcnow()
    elapsed = max(0.0, (now - started_on).total_seconds())
    total = estimated_minutes * 60
    progress = min(100.0, elapsed / total * 100)
    remaining = max(0.0, total - elapsed)

    return PrintProgress(
        progress_percent=round(progress, 1),
        remaining_minutes=math.ceil(remaining / 60),
    )


class QueueBoard:
    """Read model over the queue for dashboards and the CLI."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        clock=utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def entries(self) -> List[QueueEntry]:
        """Get queued jobs in print order with their positions."""
        try:
            async with get_session(self.session_factory) as session:
                rows = await PrintJobRepository(session).get_queue_with_owners()
        except SQLAlchemyError as e:
            raise DependencyError(f"Could not read the queue: {e}") from e

        return [
            QueueEntry(
                position=index,
                job=job,
                username=user.username,
                accumulated_print_time=user.accumulated_print_time,
            )
            for index, (job, user) in enumerate(rows, 1)
        ]

    async def position_of(self, job_id: str) -> Optional[int]:
        """Get a job's 1-based place in the queue, or None if not queued."""
        for entry in await self.entries():
            if entry.job.id == job_id:
                return entry.position
        return None

    async def current_print(self) -> Optional[PrintJob]:
        """Get the job on the printer."""
        try:
            async with get_session(self.session_factory) as session:
                return await PrintJobRepository(session).get_printing()
        except SQLAlchemyError as e:
            raise DependencyError(f"Could not read the printing job: {e}") from e

    async def active_job_for(self, user_id: str) -> Optional[PrintJob]:
        """Get the user's job in pending_review, queued or printing."""
        try:
            async with get_session(self.session_factory) as session:
                return await PrintJobRepository(session).get_active_for_user(user_id)
        except SQLAlchemyError as e:
            raise DependencyError(f"Could not read jobs for user {user_id}: {e}") from e

    async def stats(self) -> QueueStats:
        """Get queue counts, queued minutes and remaining print time."""
        try:
            async with get_session(self.session_factory) as session:
                jobs = PrintJobRepository(session)
                counts = await jobs.count_by_status()
                queued_minutes = await jobs.sum_estimated_minutes(JobStatus.QUEUED)
                printing = await jobs.get_printing()
        except SQLAlchemyError as e:
            raise DependencyError(f"Could not read queue statistics: {e}") from e

        remaining = 0
        if printing is not None:
            remaining = print_progress(
                printing.estimated_duration_minutes,
                printing.started_on,
                self.clock(),
            ).remaining_minutes

        return QueueStats(
            total_queued=counts[JobStatus.QUEUED],
            total_printing=counts[JobStatus.PRINTING],
            total_pending_review=counts[JobStatus.PENDING_REVIEW],
            estimated_queue_minutes=queued_minutes,
            printing_remaining_minutes=remaining,
        )
