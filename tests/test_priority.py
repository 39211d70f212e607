"""Tests for queue-wide priority recalculation."""

from printqueue.db import get_session
from printqueue.db.models import JobStatus
from printqueue.db.repositories.jobs import PrintJobRepository
from printqueue.db.repositories.users import UserRepository
from printqueue.queue.lifecycle import JobLifecycle
from printqueue.queue.priority import PriorityRecalculator, RecalculationReport


async def _queued(lifecycle, user_id, name, minutes):
    job = await lifecycle.submit(user_id, name)
    return await lifecycle.approve(job.id, raw_cost=25, estimated_duration_minutes=minutes)


async def _scores():
    async with get_session() as session:
        jobs = await PrintJobRepository(session).get_queue()
    return {job.project_name: job.priority_score for job in jobs}


async def _set_score(job_id, value):
    async with get_session() as session:
        await PrintJobRepository(session).update(job_id, priority_score=value)


class TestRecalculationReport:
    """Tests for RecalculationReport."""

    def test_empty_report(self):
        """A fresh report has no writes and no failures."""
        report = RecalculationReport()
        assert report.writes == 0
        assert report.ok

    def test_to_dict(self):
        """Report serialization."""
        report = RecalculationReport(examined=2, unchanged=1, updated={"a": 5.0})
        d = report.to_dict()
        assert d["examined"] == 2
        assert d["updated"] == {"a": 5.0}
        assert d["failed"] == {}


class TestPriorityRecalculator:
    """Tests for PriorityRecalculator."""

    def test_empty_queue(self, run_db):
        """Nothing queued, nothing written."""
        report = run_db(PriorityRecalculator().recalculate_all)
        assert report.examined == 0
        assert report.writes == 0

    def test_writes_only_changed_scores(self, run_db, add_user):
        """Correct scores are left alone; stale ones are fixed."""
        async def scenario():
            lifecycle = JobLifecycle()
            alice = await add_user("alice")
            bob = await add_user("bob", hours=4)
            await _queued(lifecycle, alice, "Alice part", 30)
            stale = await _queued(lifecycle, bob, "Bob part", 90)
            await _set_score(stale.id, 99.0)
            return stale.id, await PriorityRecalculator().recalculate_all(), await _scores()

        stale_id, report, scores = run_db(scenario)
        assert report.examined == 2
        assert report.unchanged == 1
        assert report.updated == {stale_id: 20.0}
        assert scores == {"Alice part": 150.0, "Bob part": 20.0}

    def test_second_run_writes_nothing(self, run_db, add_user):
        """Recalculation is idempotent."""
        async def scenario():
            lifecycle = JobLifecycle()
            for name, hours in (("alice", 0), ("bob", 3), ("carol", 12.5)):
                user_id = await add_user(name, hours=hours)
                await _queued(lifecycle, user_id, f"{name} part", 60)

            recalculator = PriorityRecalculator()
            return await recalculator.recalculate_all(), await recalculator.recalculate_all()

        first, second = run_db(scenario)
        assert first.examined == 3
        assert first.writes == 0  # approvals already scored everything
        assert second.writes == 0
        assert second.unchanged == 3

    def test_queue_order(self, run_db, add_user):
        """Light users first, heavy users last, earlier submission wins ties."""
        async def scenario():
            lifecycle = JobLifecycle()
            for name, hours in (("heavy", 19), ("early", 1), ("late", 1), ("fresh", 0)):
                user_id = await add_user(name, hours=hours)
                await _queued(lifecycle, user_id, name, 90)

            async with get_session() as session:
                return [job.project_name for job in await PrintJobRepository(session).get_queue()]

        assert run_db(scenario) == ["fresh", "early", "late", "heavy"]

    def test_gap_filler_jumps_ahead(self, run_db, add_user):
        """A short job from a moderate user beats a long job from a new user."""
        async def scenario():
            lifecycle = JobLifecycle()
            new_user = await add_user("newbie")
            regular = await add_user("regular", hours=0.5)
            await _queued(lifecycle, new_user, "Long print", 300)
            await _queued(lifecycle, regular, "Quick clip", 20)
            return await _scores()

        scores = run_db(scenario)
        assert scores == {"Long print": 100.0, "Quick clip": 116.67}

    def test_completion_rescores_queue(self, run_db, add_user):
        """Extra print time is reflected at the next triggering event."""
        async def scenario():
            lifecycle = JobLifecycle()
            alice = await add_user("alice")
            bob = await add_user("bob")
            await _queued(lifecycle, alice, "Alice part", 90)
            bob_job = await _queued(lifecycle, bob, "Bob part", 60)

            # Alice's history grows outside the lifecycle, e.g. a manual correction
            async with get_session() as session:
                await UserRepository(session).add_print_time(alice, 5)
            before = await _scores()

            await lifecycle.start(bob_job.id)
            await lifecycle.complete(bob_job.id, actual_duration_minutes=60)
            return before, await _scores()

        before, after = run_db(scenario)
        assert before == {"Alice part": 100.0, "Bob part": 100.0}
        assert after == {"Alice part": 16.67}

    def test_failed_write_is_isolated(self, run_db, add_user):
        """One broken update does not stop the others."""
        class FlakyRecalculator(PriorityRecalculator):
            broken = set()

            async def _write_score(self, semaphore, job_id, new_score):
                if job_id in self.broken:
                    raise RuntimeError("disk full")
                return await super()._write_score(semaphore, job_id, new_score)

        async def scenario():
            lifecycle = JobLifecycle()
            ids = []
            for name in ("alice", "bob", "carol"):
                user_id = await add_user(name)
                job = await _queued(lifecycle, user_id, name, 90)
                await _set_score(job.id, 1.0)
                ids.append(job.id)

            FlakyRecalculator.broken = {ids[1]}
            report = await FlakyRecalculator().recalculate_all()
            return ids, report, await _scores()

        ids, report, scores = run_db(scenario)
        assert set(report.updated) == {ids[0], ids[2]}
        assert report.failed == {ids[1]: "disk full"}
        assert not report.ok
        assert scores == {"alice": 100.0, "bob": 1.0, "carol": 100.0}

    def test_job_that_left_queue_is_skipped(self, run_db, add_user, monkeypatch):
        """A job that starts printing mid-run is not rescored."""
        async def scenario():
            lifecycle = JobLifecycle()
            user_id = await add_user("alice")
            job = await _queued(lifecycle, user_id, "Alice part", 90)
            await _set_score(job.id, 1.0)

            original = PrintJobRepository.get_queue_with_owners

            async def read_then_start(self):
                rows = await original(self)
                await lifecycle.start(job.id)
                return rows

            monkeypatch.setattr(PrintJobRepository, "get_queue_with_owners", read_then_start)
            report = await PriorityRecalculator().recalculate_all()
            monkeypatch.setattr(PrintJobRepository, "get_queue_with_owners", original)
            return job.id, report, await _job_status_and_score(job.id)

        job_id, report, (status, stored) = run_db(scenario)
        assert report.skipped == [job_id]
        assert report.writes == 0
        assert status == JobStatus.PRINTING
        assert stored == 1.0


async def _job_status_and_score(job_id):
    async with get_session() as session:
        job = await PrintJobRepository(session).get_by_id(job_id)
    return job.status, job.priority_score
