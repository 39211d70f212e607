"""Queue-wide priority recalculation.

Recomputes the karma score of every queued job from its owner's current
print time and writes back only the scores that changed. It runs on demand,
after an approval or a completion, rather than on a timer.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from printqueue.config import Settings, get_settings
from printqueue.db import get_session
from printqueue.db.repositories.jobs import PrintJobRepository
from printqueue.errors import DependencyError
from printqueue.queue import karma
from printqueue.utils import get_logger

logger = get_logger("queue.priority")


@dataclass
class RecalculationReport:
    """Outcome of one recalculation pass."""
    examined: int = 0
    unchanged: int = 0
    updated: Dict[str, float] = field(default_factory=dict)  # job id -> new score
    skipped: List[str] = field(default_factory=list)  # left the queue mid-run
    failed: Dict[str, str] = field(default_factory=dict)  # job id -> error

    @property
    def writes(self) -> int:
        """Number of scores actually written."""
        return len(self.updated)

    @property
    def ok(self) -> bool:
        """Check if every job was handled without error."""
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "examined": self.examined,
            "unchanged": self.unchanged,
            "updated": dict(self.updated),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
        }


class PriorityRecalculator:
    """
    Recomputes priority scores for the whole queue.

    Each changed score is written in its own transaction, concurrently with
    the others, so one failed write never blocks the rest. Running it twice
    with no change in between performs no writes the second time.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the recalculator.

        Args:
            session_factory: Session factory (defaults to the module-wide one)
            settings: Scoring and concurrency settings
        """
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    async def recalculate_all(self) -> RecalculationReport:
        """
        Recompute and store the score of every queued job.

        Returns:
            Report of examined, updated, skipped and failed jobs

        Raises:
            DependencyError: If the queue itself cannot be read
        """
        try:
            async with get_session(self.session_factory) as session:
                rows = await PrintJobRepository(session).get_queue_with_owners()
        except SQLAlchemyError as e:
            logger.error(f"Could not read the queue for recalculation: {e}")
            raise DependencyError(f"Could not read the queue: {e}") from e

        report = RecalculationReport(examined=len(rows))
        changes = []

        for job, user in rows:
            try:
                new_score = karma.score(
                    user.accumulated_print_time,
                    job.estimated_duration_minutes,
                    self.settings,
                )
            except ValueError as e:
                report.failed[job.id] = str(e)
                logger.error(f"Cannot score job {job.id}: {e}")
                continue

            if new_score == job.priority_score:
                report.unchanged += 1
            else:
                changes.append((job.id, job.priority_score, new_score))

        if changes:
            semaphore = asyncio.Semaphore(self.settings.recalc_max_concurrency)
            outcomes = await asyncio.gather(
                *(self._write_score(semaphore, job_id, new) for job_id, _, new in changes),
                return_exceptions=True,
            )

            for (job_id, old, new), outcome in zip(changes, outcomes):
                if isinstance(outcome, Exception):
                    report.failed[job_id] = str(outcome)
                    logger.error(f"Failed to update priority of job {job_id}: {outcome}")
                elif outcome:
                    report.updated[job_id] = new
                    logger.debug(f"Job {job_id} priority {old} -> {new}")
                else:
                    report.skipped.append(job_id)

        logger.info(
            f"Recalculated {report.examined} queued jobs: "
            f"{report.writes} updated, {report.unchanged} unchanged, "
            f"{len(report.skipped)} skipped, {len(report.failed)} failed"
        )
        return report

    async def _write_score(self, semaphore: asyncio.Semaphore, job_id: str, new_score: float) -> bool:
        """Store one score in its own transaction."""
        async with semaphore:
            async with get_session(self.session_factory) as session:
                return await PrintJobRepository(session).set_score_if_queued(job_id, new_score)
