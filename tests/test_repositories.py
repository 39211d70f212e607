"""Tests for models, repositories and small helpers."""

import pytest
from sqlalchemy.exc import IntegrityError

from printqueue.db import get_session
from printqueue.db.models import JobStatus, UserRole
from printqueue.db.repositories import PrintJobRepository, UserRepository
from printqueue.errors import AdmissionConflictError, DependencyError, StateConflictError
from printqueue.utils import duration_minutes, format_duration


class TestJobStatus:
    """Tests for JobStatus."""

    def test_active_statuses(self):
        """Review, queue and printer count as active."""
        active = [status for status in JobStatus if status.is_active]
        assert active == [JobStatus.PENDING_REVIEW, JobStatus.QUEUED, JobStatus.PRINTING]

    def test_terminal_statuses(self):
        """Terminal and active are disjoint."""
        for status in JobStatus:
            assert status.is_active != status.is_terminal


class TestUserRepository:
    """Tests for UserRepository."""

    def test_username_is_case_insensitive(self, run_db):
        """Usernames are stored lower-cased."""
        async def scenario():
            async with get_session() as session:
                users = UserRepository(session)
                created = await users.create_user("Alice", "Alice A.", role=UserRole.ADMIN)
                found = await users.get_by_username("ALICE")
            return created, found

        created, found = run_db(scenario)
        assert found.id == created.id
        assert found.username == "alice"
        assert found.to_dict()["role"] == "admin"
        assert found.to_dict()["accumulated_print_time"] == 0.0

    def test_add_print_time(self, run_db, add_user):
        """Hours accumulate; unknown users are reported."""
        async def scenario():
            user_id = await add_user("bob", hours=1.5)
            async with get_session() as session:
                users = UserRepository(session)
                added = await users.add_print_time(user_id, 0.75)
                missing = await users.add_print_time("no-such-user", 1)
                user = await users.get_by_id(user_id)
            return added, missing, user.accumulated_print_time

        added, missing, hours = run_db(scenario)
        assert added is True
        assert missing is False
        assert hours == pytest.approx(2.25)


class TestPrintJobRepository:
    """Tests for PrintJobRepository."""

    def test_create_and_counts(self, run_db, add_user):
        """New jobs await review with a zero score."""
        async def scenario():
            user_id = await add_user("carol")
            async with get_session() as session:
                jobs = PrintJobRepository(session)
                job = await jobs.create_job(user_id, "Spool holder", stl_link="https://example.com/x.stl")
                counts = await jobs.count_by_status()
                pending = await jobs.get_by_status(JobStatus.PENDING_REVIEW)
            return job, counts, pending

        job, counts, pending = run_db(scenario)
        assert job.status == JobStatus.PENDING_REVIEW
        assert job.priority_score == 0.0
        assert job.to_dict()["status"] == "pending_review"
        assert counts[JobStatus.PENDING_REVIEW] == 1
        assert counts[JobStatus.QUEUED] == 0
        assert [j.id for j in pending] == [job.id]

    def test_guarded_transition(self, run_db, add_user):
        """The write only lands when the status still matches."""
        async def scenario():
            user_id = await add_user("dave")
            async with get_session() as session:
                jobs = PrintJobRepository(session)
                job = await jobs.create_job(user_id, "Bracket")
                stale = await jobs.transition(job.id, JobStatus.QUEUED, status=JobStatus.PRINTING)
                moved = await jobs.transition(job.id, JobStatus.PENDING_REVIEW, status=JobStatus.REJECTED)
                job = await jobs.get_by_id(job.id)
            return stale, moved, job.status

        stale, moved, status = run_db(scenario)
        assert stale is False
        assert moved is True
        assert status == JobStatus.REJECTED

    def test_score_only_written_while_queued(self, run_db, add_user):
        """Scores of jobs outside the queue are left alone."""
        async def scenario():
            user_id = await add_user("erin")
            async with get_session() as session:
                jobs = PrintJobRepository(session)
                job = await jobs.create_job(user_id, "Hinge")
                before = await jobs.set_score_if_queued(job.id, 42.0)
                await jobs.update(job.id, status=JobStatus.QUEUED, estimated_duration_minutes=40)
                after = await jobs.set_score_if_queued(job.id, 42.0)
                minutes = await jobs.sum_estimated_minutes(JobStatus.QUEUED)
                queue = await jobs.get_queue()
            return before, after, minutes, queue

        before, after, minutes, queue = run_db(scenario)
        assert before is False
        assert after is True
        assert minutes == 40
        assert queue[0].priority_score == 42.0

    def test_receipt_exists(self, run_db, add_user):
        """Receipt lookup finds taken numbers only."""
        async def scenario():
            user_id = await add_user("fay")
            async with get_session() as session:
                jobs = PrintJobRepository(session)
                job = await jobs.create_job(user_id, "Mount")
                await jobs.update(job.id, receipt_number="3DNTZ-20250114-0001")
                return (
                    await jobs.receipt_exists("3DNTZ-20250114-0001"),
                    await jobs.receipt_exists("3DNTZ-20250114-0002"),
                )

        assert run_db(scenario) == (True, False)

    def test_index_rejects_second_active_job(self, run_db, add_user):
        """The store refuses a second active job even without the guard."""
        async def scenario():
            user_id = await add_user("gus")
            async with get_session() as session:
                await PrintJobRepository(session).create_job(user_id, "First")
            with pytest.raises(IntegrityError):
                async with get_session() as session:
                    await PrintJobRepository(session).create_job(user_id, "Second")

        run_db(scenario)

    def test_index_rejects_second_printing_job(self, run_db, add_user):
        """The store refuses two jobs printing at once."""
        async def scenario():
            first_user = await add_user("hal")
            second_user = await add_user("ivy")
            async with get_session() as session:
                jobs = PrintJobRepository(session)
                first = await jobs.create_job(first_user, "One")
                second = await jobs.create_job(second_user, "Two")
                await jobs.update(first.id, status=JobStatus.PRINTING)
            with pytest.raises(IntegrityError):
                async with get_session() as session:
                    await PrintJobRepository(session).update(second.id, status=JobStatus.PRINTING)

        run_db(scenario)


class TestErrors:
    """Tests for error messages."""

    def test_admission_conflict_message(self):
        """The user is told to wait for their current job."""
        error = AdmissionConflictError("user-1", "job-1")
        assert "already have an active print request" in error.user_message
        assert not error.retryable

    def test_state_conflict_default_message(self):
        """Conflicts tell the user to refresh."""
        error = StateConflictError("Job moved", job_id="job-1", current_status="printing")
        assert error.user_message.endswith("Refresh the job and try again.")
        assert error.current_status == "printing"

    def test_dependency_error_is_retryable(self):
        """Store failures are retryable and stay generic for the user."""
        error = DependencyError("database is locked")
        assert error.retryable
        assert "database is locked" not in error.user_message


class TestDurationHelpers:
    """Tests for duration helpers."""

    def test_duration_minutes(self):
        """Hours and minutes combine."""
        assert duration_minutes(1, 30) == 90
        assert duration_minutes(0, 45) == 45

    def test_negative_duration_rejected(self):
        """Negative parts are refused."""
        with pytest.raises(ValueError):
            duration_minutes(-1, 0)

    def test_format_duration(self):
        """Durations render as hours and minutes."""
        assert format_duration(45) == "45m"
        assert format_duration(120) == "2h"
        assert format_duration(135) == "2h 15m"
