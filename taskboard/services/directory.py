"""
Identity directory - email lookup and role queries over the users table
"""
from typing import Iterable, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.models.user import User, UserRole


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def lookup_email(session: AsyncSession, user_id: int) -> Optional[str]:
    """Registered email address of a user, or None when missing/blank"""
    result = await session.execute(select(User.email).where(User.id == user_id))
    email = result.scalar_one_or_none()
    if email and email.strip():
        return email.strip()
    return None


async def list_administrators(session: AsyncSession) -> Set[int]:
    result = await session.execute(
        select(User.id).where(User.role == UserRole.ADMIN, User.is_active.isnot(False))
    )
    return set(result.scalars().all())


async def existing_user_ids(session: AsyncSession, user_ids: Iterable[int]) -> Set[int]:
    """Subset of ``user_ids`` that exist in the directory"""
    wanted = set(user_ids)
    if not wanted:
        return set()
    result = await session.execute(select(User.id).where(User.id.in_(wanted)))
    return set(result.scalars().all())


async def lookup_emails(session: AsyncSession, user_ids: Iterable[int]) -> dict:
    """Map of user id -> email for users with a non-blank address"""
    wanted = set(user_ids)
    if not wanted:
        return {}
    result = await session.execute(select(User.id, User.email).where(User.id.in_(wanted)))
    return {
        user_id: email.strip()
        for user_id, email in result.all()
        if email and email.strip()
    }
