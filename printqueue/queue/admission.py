"""One-active-job admission check.

A user may hold at most one job in pending_review, queued or printing. The
check here reads before the insert; the partial unique index on print_jobs
rejects the insert if a concurrent submission slipped in between.
"""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from printqueue.db import get_session
from printqueue.db.models import PrintJob
from printqueue.db.repositories.jobs import PrintJobRepository
from printqueue.errors import AdmissionConflictError, DependencyError
from printqueue.utils import get_logger

logger = get_logger("queue.admission")


class AdmissionGuard:
    """Decides whether a user may submit a new print request."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory

    async def find_active_job(
        self,
        user_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[PrintJob]:
        """Get the user's active job, if any.

        Runs inside ``session`` when given so the check shares the caller's
        transaction.
        """
        if session is not None:
            return await PrintJobRepository(session).get_active_for_user(user_id)

        try:
            async with get_session(self.session_factory) as own_session:
                return await PrintJobRepository(own_session).get_active_for_user(user_id)
        except SQLAlchemyError as e:
            raise DependencyError(f"Could not check active jobs for user {user_id}: {e}") from e

    async def can_submit(self, user_id: str, session: Optional[AsyncSession] = None) -> bool:
        """Check if the user has no job in pending_review, queued or printing."""
        return await self.find_active_job(user_id, session) is None

    async def ensure_can_submit(self, user_id: str, session: Optional[AsyncSession] = None) -> None:
        """
        Refuse the submission if the user already has an active job.

        Raises:
            AdmissionConflictError: If an active job exists
        """
        active = await self.find_active_job(user_id, session)
        if active is not None:
            logger.info(
                f"Refused submission from user {user_id}: job {active.id} is {active.status.value}"
            )
            raise AdmissionConflictError(user_id, active.id)
