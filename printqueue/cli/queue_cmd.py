"""Print queue CLI commands."""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.table import Table

from printqueue.errors import NotFoundError, PrintQueueError, ValidationError
from printqueue.utils import duration_minutes, format_duration

console = Console()

T = TypeVar("T")

STATUS_COLORS = {
    "pending_review": "yellow",
    "queued": "cyan",
    "printing": "green",
    "completed": "green",
    "rejected": "red",
    "failed": "red",
}


def run(action: Callable[[], Awaitable[T]]) -> T:
    """Run a database coroutine, report domain errors and release the engine."""
    from printqueue.db import close_db

    async def runner() -> T:
        try:
            return await action()
        finally:
            await close_db()

    try:
        return asyncio.run(runner())
    except PrintQueueError as e:
        console.print(f"[red]{e.user_message}[/red]")
        raise click.exceptions.Exit(1)


def _minutes(hours: int, minutes: int) -> int:
    try:
        return duration_minutes(hours, minutes)
    except ValueError as e:
        raise ValidationError(str(e)) from e


async def _user_id(username: str) -> str:
    from printqueue.db import get_session
    from printqueue.db.repositories.users import UserRepository

    async with get_session() as session:
        user = await UserRepository(session).get_by_username(username)
    if user is None:
        raise NotFoundError(f"User {username} not found", f"No user named '{username}'.")
    return user.id


def _print_job(job, heading: str) -> None:
    color = STATUS_COLORS.get(job.status.value, "white")
    console.print(f"[green]{heading}[/green]")
    console.print(f"  ID: {job.id}")
    console.print(f"  Project: {job.project_name}")
    console.print(f"  Status: [{color}]{job.status.value}[/{color}]")
    if job.receipt_number:
        console.print(f"  Receipt: {job.receipt_number}")
    if job.status.value == "queued":
        console.print(f"  Priority: {job.priority_score:.2f}")


@click.group()
def queue() -> None:
    """Print queue management commands."""
    pass


@queue.command("add-user")
@click.argument("username")
@click.option("--name", "-n", default=None, help="Display name")
@click.option("--admin", is_flag=True, help="Create an admin account")
def queue_add_user(username: str, name: Optional[str], admin: bool) -> None:
    """Register a user who can submit print requests."""
    from printqueue.db import get_session
    from printqueue.db.models import UserRole
    from printqueue.db.repositories.users import UserRepository

    async def action():
        async with get_session() as session:
            return await UserRepository(session).create_user(
                username=username,
                name=name or username,
                role=UserRole.ADMIN if admin else UserRole.USER,
            )

    user = run(action)
    console.print(f"[green]Added user {user.username}[/green] ({user.id})")


@queue.command("submit")
@click.argument("username")
@click.argument("project_name")
@click.option("--file", "stl_file", default=None, help="Stored model file reference")
@click.option("--link", "stl_link", default=None, help="External link to the model")
def queue_submit(username: str, project_name: str, stl_file: Optional[str], stl_link: Optional[str]) -> None:
    """Submit a print request for review.

    Example: pq queue submit alice "Phone stand" --link https://example.com/stand.stl
    """
    from printqueue.queue.lifecycle import JobLifecycle

    async def action():
        user_id = await _user_id(username)
        return await JobLifecycle().submit(user_id, project_name, stl_file=stl_file, stl_link=stl_link)

    _print_job(run(action), "Submitted for review")


@queue.command("approve")
@click.argument("job_id")
@click.option("--cost", "-c", type=float, required=True, help="Price of the print")
@click.option("--hours", "-h", type=int, default=0, help="Estimated hours")
@click.option("--minutes", "-m", type=int, default=0, help="Estimated minutes")
@click.option("--notes", default=None, help="Note for the user")
@click.option("--paid", is_flag=True, help="Already paid")
def queue_approve(job_id: str, cost: float, hours: int, minutes: int, notes: Optional[str], paid: bool) -> None:
    """Approve a pending request and add it to the queue."""
    from printqueue.queue.lifecycle import JobLifecycle

    async def action():
        return await JobLifecycle().approve(
            job_id,
            raw_cost=cost,
            estimated_duration_minutes=_minutes(hours, minutes),
            admin_notes=notes,
            is_paid=paid,
        )

    _print_job(run(action), "Approved")


@queue.command("reject")
@click.argument("job_id")
@click.option("--notes", default=None, help="Reason for the user")
def queue_reject(job_id: str, notes: Optional[str]) -> None:
    """Reject a pending request."""
    from printqueue.queue.lifecycle import JobLifecycle

    _print_job(run(lambda: JobLifecycle().reject(job_id, admin_notes=notes)), "Rejected")


@queue.command("start")
@click.argument("job_id")
def queue_start(job_id: str) -> None:
    """Start printing a queued job."""
    from printqueue.queue.lifecycle import JobLifecycle

    _print_job(run(lambda: JobLifecycle().start(job_id)), "Printing")


@queue.command("complete")
@click.argument("job_id")
@click.option("--hours", "-h", type=int, default=0, help="Actual hours")
@click.option("--minutes", "-m", type=int, default=0, help="Actual minutes")
@click.option("--paid/--unpaid", default=None, help="Update payment status")
def queue_complete(job_id: str, hours: int, minutes: int, paid: Optional[bool]) -> None:
    """Mark the printing job as completed."""
    from printqueue.queue.lifecycle import JobLifecycle

    async def action():
        return await JobLifecycle().complete(
            job_id,
            actual_duration_minutes=_minutes(hours, minutes),
            is_paid=paid,
        )

    _print_job(run(action), "Completed")


@queue.command("fail")
@click.argument("job_id")
@click.option("--notes", default=None, help="What went wrong")
def queue_fail(job_id: str, notes: Optional[str]) -> None:
    """Mark the printing job as failed (no karma cost to the user)."""
    from printqueue.queue.lifecycle import JobLifecycle

    _print_job(run(lambda: JobLifecycle().fail(job_id, admin_notes=notes)), "Failed")


@queue.command("paid")
@click.argument("job_id")
@click.option("--unpaid", is_flag=True, help="Mark as not paid instead")
def queue_paid(job_id: str, unpaid: bool) -> None:
    """Record payment for a job."""
    from printqueue.queue.lifecycle import JobLifecycle

    job = run(lambda: JobLifecycle().set_paid(job_id, not unpaid))
    console.print(f"[green]Job {job.id} marked as {'paid' if job.is_paid else 'unpaid'}[/green]")


@queue.command("pending")
@click.option("--limit", "-l", type=int, default=50, help="Maximum requests to show")
def queue_pending(limit: int) -> None:
    """List requests waiting for review, newest first."""
    from printqueue.db import get_session
    from printqueue.db.models import JobStatus
    from printqueue.db.repositories.jobs import PrintJobRepository

    async def action():
        async with get_session() as session:
            return await PrintJobRepository(session).get_by_status(JobStatus.PENDING_REVIEW, limit=limit)

    jobs = run(action)
    if not jobs:
        console.print("[yellow]Nothing waiting for review[/yellow]")
        return

    table = Table(title="Awaiting Review")
    table.add_column("ID", style="cyan")
    table.add_column("Project")
    table.add_column("Submitted")
    table.add_column("Model")

    for job in jobs:
        table.add_row(
            job.id,
            job.project_name[:24],
            job.created_at.strftime("%Y-%m-%d %H:%M"),
            job.stl_link or job.stl_file or "-",
        )

    console.print(table)


@queue.command("list")
def queue_list() -> None:
    """List queued jobs in print order."""
    from printqueue.queue.board import QueueBoard

    board = QueueBoard()

    async def action():
        return await board.entries(), await board.current_print()

    entries, printing = run(action)

    if printing is not None:
        console.print(f"[green]Printing:[/green] {printing.project_name} ({printing.id})")

    if not entries:
        console.print("[yellow]Queue is empty[/yellow]")
        return

    table = Table(title="Print Queue")
    table.add_column("#", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Project")
    table.add_column("User")
    table.add_column("Score", justify="right")
    table.add_column("Estimate", justify="right")
    table.add_column("Receipt")

    for entry in entries:
        job = entry.job
        table.add_row(
            str(entry.position),
            job.id,
            job.project_name[:24],
            entry.username,
            f"{job.priority_score:.2f}",
            format_duration(job.estimated_duration_minutes or 0),
            job.receipt_number or "-",
        )

    console.print(table)


@queue.command("stats")
def queue_stats() -> None:
    """Show queue counts and waiting time."""
    from printqueue.queue.board import QueueBoard

    stats = run(QueueBoard().stats)

    console.print(f"Pending review: {stats.total_pending_review}")
    console.print(f"Queued: {stats.total_queued}")
    console.print(f"Printing: {stats.total_printing}")
    console.print(f"Queued print time: {format_duration(stats.estimated_queue_minutes)}")
    console.print(f"Total wait: {format_duration(stats.total_wait_minutes)}")


@queue.command("recalculate")
def queue_recalculate() -> None:
    """Recompute priority scores for the whole queue."""
    from printqueue.queue.priority import PriorityRecalculator

    report = run(PriorityRecalculator().recalculate_all)

    console.print(
        f"[green]Examined {report.examined} jobs[/green]: "
        f"{report.writes} updated, {report.unchanged} unchanged"
    )
    for job_id, error in report.failed.items():
        console.print(f"[red]  {job_id}: {error}[/red]")
