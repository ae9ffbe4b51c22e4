from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFoundError
from ..models import Menu, Selection
from .menus import parse_uuid
from .profiles import ensure_owns_student

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DATE_MODE_CREATED = "created"
DATE_MODE_WEEKDAY = "weekday"


def weekday_offset(day: str) -> Optional[int]:
    key = (day or "").strip().lower()
    for index, name in enumerate(WEEKDAYS):
        if key in (name, name[:3]):
            return index
    return None


def selection_date(week_start: dt.date, day: str, mode: str, today: Optional[dt.date] = None) -> dt.date:
    """Calendar date stored on a new selection.

    ``created`` keeps the server's current date. ``weekday`` places the
    selection on ``day`` within the menu's week, counted from week_start.
    """
    today = today or dt.date.today()
    if mode != DATE_MODE_WEEKDAY:
        return today
    offset = weekday_offset(day)
    if offset is None:
        logger.warning("Unrecognised selection day %r; using current date", day)
        return today
    return week_start + dt.timedelta(days=(offset - week_start.weekday()) % 7)


async def list_selections_for_children(
    session: AsyncSession, menu_id, child_ids: list[str]
) -> Sequence[Selection]:
    if not child_ids:
        return []
    result = await session.scalars(
        select(Selection)
        .where(Selection.menu_id == menu_id, Selection.student_id.in_(child_ids))
        .order_by(Selection.created_at)
    )
    return result.all()


async def list_selections_for_menu(session: AsyncSession, menu_id) -> Sequence[Selection]:
    result = await session.scalars(
        select(Selection).where(Selection.menu_id == menu_id).order_by(Selection.date, Selection.day)
    )
    return result.all()


def _by_natural_key(menu_id, student_id: str, day: str):
    return select(Selection).where(
        Selection.menu_id == menu_id,
        Selection.student_id == student_id,
        Selection.day == day,
    )


async def _find_selection(session: AsyncSession, menu_id, student_id: str, day: str) -> Optional[Selection]:
    try:
        return await session.scalar(_by_natural_key(menu_id, student_id, day).limit(1))
    except SQLAlchemyError:
        logger.exception(
            "Existing selection lookup failed menu=%s student=%s day=%s", menu_id, student_id, day
        )
        await session.rollback()
        return None


async def save_selection(
    session: AsyncSession,
    *,
    menu: Menu,
    student_id: str,
    day: str,
    meal_type: str,
    special_requirements: Optional[str],
    parent_id: str,
    date_mode: str = DATE_MODE_CREATED,
) -> tuple[Selection, bool]:
    """Create or update the selection for (menu, student, day). Returns ``(selection, created)``."""
    menu_id, week_start = menu.id, menu.week_start
    existing = await _find_selection(session, menu_id, student_id, day)
    if existing is None:
        selection = Selection(
            menu_id=menu_id,
            student_id=student_id,
            day=day,
            date=selection_date(week_start, day, date_mode),
            meal_type=meal_type,
            special_requirements=special_requirements,
            parent_id=parent_id,
        )
        session.add(selection)
        try:
            await session.commit()
            await session.refresh(selection)
            return selection, True
        except IntegrityError:
            await session.rollback()
            logger.warning(
                "Selection insert lost a race; updating instead menu=%s student=%s day=%s",
                menu_id,
                student_id,
                day,
            )
            existing = await session.scalar(_by_natural_key(menu_id, student_id, day))
            if existing is None:
                raise

    existing.meal_type = meal_type
    existing.special_requirements = special_requirements
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(existing)
    return existing, False


async def get_selection(session: AsyncSession, selection_id: Any) -> Selection:
    parsed = parse_uuid(selection_id)
    selection = await session.get(Selection, parsed) if parsed else None
    if selection is None:
        raise NotFoundError("Selection not found")
    return selection


async def delete_selection(session: AsyncSession, selection: Selection, child_ids: list[str]) -> None:
    ensure_owns_student(child_ids, selection.student_id)
    await session.execute(delete(Selection).where(Selection.id == selection.id))
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
