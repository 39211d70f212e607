"""Print job repository for job-related database operations."""

from typing import Dict, List, Optional, Tuple
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from printqueue.db.models import PrintJob, JobStatus, User, ACTIVE_STATUSES
from printqueue.db.repositories.base import BaseRepository


class PrintJobRepository(BaseRepository[PrintJob]):
    """Repository for PrintJob entities."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, PrintJob)

    async def create_job(
        self,
        user_id: str,
        project_name: str,
        stl_file: Optional[str] = None,
        stl_link: Optional[str] = None
    ) -> PrintJob:
        """Create a new job awaiting review."""
        return await self.create(
            user_id=user_id,
            project_name=project_name,
            stl_file=stl_file,
            stl_link=stl_link,
            status=JobStatus.PENDING_REVIEW,
            priority_score=0.0,
        )

    async def get_queue(self) -> List[PrintJob]:
        """Get queued jobs, highest score first, earlier submission winning ties."""
        result = await self.session.execute(
            select(PrintJob)
            .where(PrintJob.status == JobStatus.QUEUED)
            .order_by(PrintJob.priority_score.desc(), PrintJob.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_queue_with_owners(self) -> List[Tuple[PrintJob, User]]:
        """Get queued jobs joined with their owners, in queue order."""
        result = await self.session.execute(
            select(PrintJob, User)
            .join(User, PrintJob.user_id == User.id)
            .where(PrintJob.status == JobStatus.QUEUED)
            .order_by(PrintJob.priority_score.desc(), PrintJob.created_at.asc())
        )
        return [(job, user) for job, user in result.all()]

    async def get_by_status(self, status: JobStatus, limit: int = 100) -> List[PrintJob]:
        """Get jobs in one status, most recent first."""
        result = await self.session.execute(
            select(PrintJob)
            .where(PrintJob.status == status)
            .order_by(PrintJob.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_active_for_user(self, user_id: str) -> Optional[PrintJob]:
        """Get the user's most recent job in pending_review, queued or printing."""
        result = await self.session.execute(
            select(PrintJob)
            .where(
                PrintJob.user_id == user_id,
                PrintJob.status.in_(ACTIVE_STATUSES)
            )
            .order_by(PrintJob.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_printing(self) -> Optional[PrintJob]:
        """Get the job currently on the printer."""
        result = await self.session.execute(
            select(PrintJob).where(PrintJob.status == JobStatus.PRINTING).limit(1)
        )
        return result.scalar_one_or_none()

    async def transition(self, job_id: str, expected: JobStatus, **values) -> bool:
        """Update a job only if it is still in the expected status.

        Returns False when another writer moved the job first, in which case
        nothing was written.
        """
        result = await self.session.execute(
            update(PrintJob)
            .where(PrintJob.id == job_id, PrintJob.status == expected)
            .values(**values)
        )
        return result.rowcount == 1

    async def set_score_if_queued(self, job_id: str, score: float) -> bool:
        """Store a new priority score for a job that is still queued."""
        result = await self.session.execute(
            update(PrintJob)
            .where(PrintJob.id == job_id, PrintJob.status == JobStatus.QUEUED)
            .values(priority_score=score)
        )
        return result.rowcount == 1

    async def receipt_exists(self, receipt_number: str) -> bool:
        """Check if a receipt number is already taken."""
        result = await self.session.execute(
            select(func.count(PrintJob.id)).where(PrintJob.receipt_number == receipt_number)
        )
        return (result.scalar() or 0) > 0

    async def count_by_status(self) -> Dict[JobStatus, int]:
        """Get job counts for every status."""
        result = await self.session.execute(
            select(PrintJob.status, func.count(PrintJob.id)).group_by(PrintJob.status)
        )
        counts = {status: 0 for status in JobStatus}
        for status, count in result.all():
            counts[JobStatus(status)] = count
        return counts

    async def sum_estimated_minutes(self, status: JobStatus = JobStatus.QUEUED) -> int:
        """Total estimated print minutes of jobs in a status."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(PrintJob.estimated_duration_minutes), 0))
            .where(PrintJob.status == status)
        )
        return int(result.scalar() or 0)
