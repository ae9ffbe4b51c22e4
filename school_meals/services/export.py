"""Flatten menu selections into the admin CSV report."""

from __future__ import annotations

import csv
import io
import logging
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFoundError
from ..models import Menu, Selection, Student
from .selections import list_selections_for_menu

logger = logging.getLogger(__name__)

EXPORT_FIELDS: tuple[tuple[str, str], ...] = (
    ("Date", "date"),
    ("Day", "day"),
    ("Student Name", "student_name"),
    ("Class", "class"),
    ("Meal Type", "meal_type"),
    ("Menu Description", "menu_description"),
    ("Special Requirements", "special_requirements"),
)


def _describe(entry: Any) -> str:
    if entry is None:
        return ""
    if isinstance(entry, str):
        return entry
    if isinstance(entry, Mapping):
        for key in ("description", "name", "title"):
            if entry.get(key):
                return str(entry[key])
        return ""
    if isinstance(entry, (list, tuple)):
        return ", ".join(part for part in (_describe(item) for item in entry) if part)
    return str(entry)


def _day_meals(menu_data: Mapping[str, Any], day: str) -> Any:
    key = (day or "").strip().lower()
    days = menu_data.get("days")
    if isinstance(days, list):
        for item in days:
            if isinstance(item, Mapping) and str(item.get("day", "")).strip().lower() == key:
                return item.get("meals", item.get("options"))
        return None
    if isinstance(days, Mapping):
        menu_data = days
    for name, meals in menu_data.items():
        if str(name).strip().lower() == key:
            return meals
    return None


def menu_description(menu_data: Mapping[str, Any] | None, day: str, meal_type: str) -> str:
    """Find the description of ``meal_type`` on ``day`` in a menu payload.

    Two payload shapes are understood: ``{"monday": {...}}`` keyed by day
    (optionally nested under ``"days"``), and ``{"days": [{"day": ..., "meals": ...}]}``.
    The meals for a day may be a mapping of meal type to option or a list of
    options carrying a ``type``/``meal_type`` key.
    """
    if not menu_data:
        return ""
    meals = _day_meals(menu_data, day)
    wanted = (meal_type or "").strip().lower()
    if isinstance(meals, Mapping):
        for name, option in meals.items():
            if str(name).strip().lower() == wanted:
                return _describe(option)
        return ""
    if isinstance(meals, list):
        for option in meals:
            if not isinstance(option, Mapping):
                continue
            kind = option.get("meal_type", option.get("type", ""))
            if str(kind).strip().lower() == wanted:
                return _describe(option)
    return ""


def format_selections_for_export(
    selections: Iterable[Selection],
    students: Iterable[Student],
    menu_data: Mapping[str, Any] | None,
) -> list[dict[str, str]]:
    by_id = {str(student.id): student for student in students}
    rows: list[dict[str, str]] = []
    for selection in selections:
        student = by_id.get(str(selection.student_id))
        rows.append(
            {
                "date": selection.date.isoformat() if selection.date else "",
                "day": selection.day,
                "student_name": student.full_name if student else "",
                "class": (student.class_name or "") if student else "",
                "meal_type": selection.meal_type,
                "menu_description": menu_description(menu_data, selection.day, selection.meal_type),
                "special_requirements": selection.special_requirements or "",
            }
        )
    return rows


def generate_csv(rows: Iterable[Mapping[str, Any]], fields: Sequence[tuple[str, str]] = EXPORT_FIELDS) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([label for label, _ in fields])
    for row in rows:
        writer.writerow([row.get(key, "") for _, key in fields])
    return buffer.getvalue()


def export_filename(menu: Menu) -> str:
    return f"menu-selections-{menu.week_start.isoformat()}-to-{menu.week_end.isoformat()}.csv"


async def _load_students(session: AsyncSession, student_ids: list[str]) -> Sequence[Student]:
    try:
        result = await session.scalars(select(Student).where(Student.id.in_(student_ids)))
        return result.all()
    except SQLAlchemyError:
        logger.exception("Student lookup failed during export; names left blank")
        return []


async def build_menu_export(session: AsyncSession, menu: Menu) -> tuple[str, str]:
    """Return ``(filename, csv_text)``; raises NotFoundError when the menu has no selections."""
    filename = export_filename(menu)
    menu_data = menu.menu_data
    selections = await list_selections_for_menu(session, menu.id)
    if not selections:
        raise NotFoundError("No selections found for this menu")
    student_ids = sorted({str(selection.student_id) for selection in selections})
    students = await _load_students(session, student_ids)
    rows = format_selections_for_export(selections, students, menu_data)
    logger.info("Menu export built menu=%s rows=%s students=%s", menu.id, len(rows), len(students))
    return filename, generate_csv(rows)
