"""
User Service - resolve document owners by email
"""
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from receipts.database.models import User


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    """Get user by email, None if unknown"""
    email = normalize_email(email)
    if not email:
        return None
    stmt = select(User).where(User.email == email)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    email: str,
    name: str,
    avatar: str = None
) -> User:
    """Create new user account"""
    user = User(
        email=normalize_email(email),
        name=name,
        avatar=avatar
    )
    session.add(user)
    await session.commit()
    return user
