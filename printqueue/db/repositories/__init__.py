"""Repository classes for database access.

Implements the repository pattern for clean data access abstraction.
"""

from printqueue.db.repositories.base import BaseRepository
from printqueue.db.repositories.users import UserRepository
from printqueue.db.repositories.jobs import PrintJobRepository

__all__ = [
    "BaseRepository",
    "UserRepository",
    "PrintJobRepository",
]
