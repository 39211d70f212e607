"""User repository for user-related database operations."""

from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from printqueue.db.models import User, UserRole
from printqueue.db.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User entities."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, User)

    async def get_by_username(self, username: str) -> Optional[User]:
        """Get user by username."""
        result = await self.session.execute(
            select(User).where(User.username == username.lower())
        )
        return result.scalar_one_or_none()

    async def create_user(
        self,
        username: str,
        name: str,
        role: UserRole = UserRole.USER,
        accumulated_print_time: float = 0.0
    ) -> User:
        """Create a new user."""
        return await self.create(
            username=username.lower(),
            name=name,
            role=role,
            accumulated_print_time=accumulated_print_time,
        )

    async def add_print_time(self, user_id: str, hours: float) -> bool:
        """Add printer hours to a user's total.

        The increment happens inside the UPDATE statement so concurrent
        completions for the same user cannot lose each other's hours.
        """
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(accumulated_print_time=User.accumulated_print_time + hours)
        )
        return result.rowcount > 0
