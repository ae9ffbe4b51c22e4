from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFoundError, OwnershipError
from ..models import Profile, Role

logger = logging.getLogger(__name__)

# Request field -> column. Only keys present in the update payload are written.
_UPDATABLE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "phone": "phone",
    "address": "address",
    "children": "children",
}


async def create_profile(
    session: AsyncSession,
    *,
    user_id: str,
    email: str,
    first_name: str,
    last_name: str,
    role: str = Role.PARENT,
) -> Profile:
    profile = Profile(
        id=user_id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role or Role.PARENT,
        children=[],
    )
    session.add(profile)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(profile)
    return profile


async def get_profile(session: AsyncSession, user_id: str) -> Profile:
    profile = await session.get(Profile, user_id)
    if profile is None:
        raise NotFoundError("Profile not found")
    return profile


async def get_role(session: AsyncSession, user_id: str) -> Optional[str]:
    return await session.scalar(select(Profile.role).where(Profile.id == user_id))


async def update_profile(session: AsyncSession, user_id: str, changes: Dict[str, Any]) -> Profile:
    """Write the provided fields; ``children`` replaces the stored list wholesale."""
    profile = await get_profile(session, user_id)
    for key, column in _UPDATABLE_FIELDS.items():
        if key not in changes:
            continue
        value = changes[key]
        if column == "children" and value is None:
            value = []
        setattr(profile, column, value)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(profile)
    return profile


async def get_child_ids(session: AsyncSession, user_id: str) -> list[str]:
    profile = await get_profile(session, user_id)
    return profile.child_ids


def ensure_owns_student(child_ids: list[str], student_id: str) -> None:
    if str(student_id) not in child_ids:
        raise OwnershipError("Student does not belong to this parent")
