from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any, Dict, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFoundError
from ..models import Menu

logger = logging.getLogger(__name__)


def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


async def get_latest_menu(session: AsyncSession) -> Menu:
    # created_at only breaks ties between rows sharing a week_start
    menu = await session.scalar(
        select(Menu).order_by(Menu.week_start.desc(), Menu.created_at.desc()).limit(1)
    )
    if menu is None:
        raise NotFoundError("No weekly menu found")
    return menu


async def get_menu(session: AsyncSession, menu_id: Any) -> Menu:
    parsed = parse_uuid(menu_id)
    menu = await session.get(Menu, parsed) if parsed else None
    if menu is None:
        raise NotFoundError("Menu not found")
    return menu


async def get_menu_by_week_start(session: AsyncSession, week_start: dt.date) -> Menu:
    menu = await session.scalar(select(Menu).where(Menu.week_start == week_start).limit(1))
    if menu is None:
        raise NotFoundError("Menu not found")
    return menu


async def resolve_menu(session: AsyncSession, menu_id: Any = None) -> Menu:
    """Explicit id when given, otherwise the latest menu."""
    if menu_id:
        return await get_menu(session, menu_id)
    return await get_latest_menu(session)


async def _find_menu_for_week(session: AsyncSession, week_start: dt.date) -> Optional[Menu]:
    try:
        return await session.scalar(select(Menu).where(Menu.week_start == week_start).limit(1))
    except SQLAlchemyError:
        # Lookup failures fall through to the insert branch.
        logger.exception("Existing menu lookup failed week_start=%s", week_start)
        await session.rollback()
        return None


async def save_menu(
    session: AsyncSession,
    *,
    week_start: dt.date,
    week_end: dt.date,
    menu_data: Dict[str, Any],
    actor_id: str,
) -> tuple[Menu, bool]:
    """Create the menu for ``week_start`` or update the existing one.

    Returns ``(menu, created)``. An insert that collides with a concurrently
    created row is retried once as an update of that row.
    """
    existing = await _find_menu_for_week(session, week_start)
    if existing is None:
        menu = Menu(
            week_start=week_start,
            week_end=week_end,
            menu_data=menu_data,
            created_by=actor_id,
        )
        session.add(menu)
        try:
            await session.commit()
            await session.refresh(menu)
            return menu, True
        except IntegrityError:
            await session.rollback()
            logger.warning("Menu insert lost a race; updating instead week_start=%s", week_start)
            existing = await get_menu_by_week_start(session, week_start)

    existing.menu_data = menu_data
    existing.updated_by = actor_id
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(existing)
    return existing, False


async def list_menu_history(session: AsyncSession, *, limit: int, offset: int) -> tuple[Sequence[Menu], int]:
    total = await session.scalar(select(func.count()).select_from(Menu))
    rows = (
        await session.scalars(
            select(Menu).order_by(Menu.week_start.desc()).offset(offset).limit(limit)
        )
    ).all()
    return rows, int(total or 0)
