"""Shared utilities for the print queue."""

import logging
from datetime import datetime, timezone

from rich.console import Console
from rich.logging import RichHandler

# Rich console for pretty output
console = Console()


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Set up logging with Rich handler."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    return logging.getLogger("printqueue")


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module."""
    return logging.getLogger(f"printqueue.{name}")


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the stored columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def duration_minutes(hours: int = 0, minutes: int = 0) -> int:
    """Combine an hours/minutes form input into total minutes."""
    if hours < 0 or minutes < 0:
        raise ValueError("Duration parts must not be negative")
    return int(hours) * 60 + int(minutes)


def format_duration(minutes: float) -> str:
    """Format a duration in minutes as a human-readable string."""
    minutes = int(minutes)
    if minutes < 60:
        return f"{minutes}m"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m" if mins else f"{hours}h"
