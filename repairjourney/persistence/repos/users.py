from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from repairjourney.domain.models import User


async def get_user(session: AsyncSession, user_id: int) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession, *, username: str, email: str | None = None, user_id: int | None = None
) -> User:
    row = User(username=username, email=email)
    if user_id is not None:
        row.id = user_id
    session.add(row)
    await session.flush()
    return row
