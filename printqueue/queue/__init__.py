"""Print queue scheduling: karma scoring, rescoring and the job lifecycle."""

from printqueue.queue.karma import score, round_score
from printqueue.queue.priority import (
    PriorityRecalculator,
    RecalculationReport,
)
from printqueue.queue.admission import AdmissionGuard
from printqueue.queue.lifecycle import (
    JobAction,
    JobLifecycle,
    TRANSITIONS,
    allowed_actions,
    check_transition,
)
from printqueue.queue.board import (
    QueueBoard,
    QueueEntry,
    QueueStats,
    PrintProgress,
    print_progress,
)

__all__ = [
    "score",
    "round_score",
    "PriorityRecalculator",
    "RecalculationReport",
    "AdmissionGuard",
    "JobAction",
    "JobLifecycle",
    "TRANSITIONS",
    "allowed_actions",
    "check_transition",
    "QueueBoard",
    "QueueEntry",
    "QueueStats",
    "PrintProgress",
    "print_progress",
]
