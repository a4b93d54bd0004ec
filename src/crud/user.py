from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.users import User


class UserCRUD:
    """CRUD operations for users."""

    async def get_by_id(self, db: AsyncSession, user_id: UUID) -> User | None:
        """Get a user by their ID."""
        statement = select(User).where(User.id == user_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def consume_iterations(
        self, db: AsyncSession, user_id: UUID, amount: float
    ) -> bool:
        """Atomically charge ``amount`` iteration credits.

        The check and the increment are a single conditional UPDATE, so two
        concurrent requests cannot both pass a nearly exhausted quota. The
        charge is allowed while the user is still under their limit, so a
        fractional cost may end slightly above it.

        Returns:
            True if the credits were consumed, False if the quota is exhausted
            (or the user does not exist).
        """
        statement = (
            update(User)
            .where(User.id == user_id, User.iterations_used < User.iterations_limit)
            .values(iterations_used=User.iterations_used + amount)
            .returning(User.iterations_used)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await db.execute(statement)
            row = result.first()
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return row is not None


# Create singleton instance
user_crud = UserCRUD()


async def get_user_by_id(db: AsyncSession, user_id: UUID) -> User | None:
    """Get a user by their ID."""
    return await user_crud.get_by_id(db, user_id)
