from __future__ import annotations

import datetime as dt
import uuid
from typing import Optional

from sqlalchemy import JSON, Date, DateTime, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

json_type = JSON().with_variant(JSONB, "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class TimestampMixin:
    """Common created/updated timestamp columns."""

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class Role:
    PARENT = "parent"
    ADMIN = "admin"


class Profile(Base, TimestampMixin):
    """Application-side user record; ``id`` is the auth provider's user id."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=Role.PARENT)
    phone: Mapped[Optional[str]] = mapped_column(String(64))
    address: Mapped[Optional[str]] = mapped_column(String(512))
    # Each child is a JSON object carrying at least an "id".
    children: Mapped[list] = mapped_column(json_type, nullable=False, default=list)

    @property
    def child_ids(self) -> list[str]:
        return [str(child["id"]) for child in (self.children or []) if isinstance(child, dict) and child.get("id")]

    def __repr__(self) -> str:
        return f"Profile(id={self.id}, email={self.email}, role={self.role})"


class Menu(Base, TimestampMixin):
    __tablename__ = "menus"
    __table_args__ = (UniqueConstraint("week_start", name="uq_menus_week_start"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    week_start: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    week_end: Mapped[dt.date] = mapped_column(Date, nullable=False)
    menu_data: Mapped[dict] = mapped_column(json_type, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(64))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))

    def __repr__(self) -> str:
        return f"Menu(id={self.id}, week_start={self.week_start}, week_end={self.week_end})"


class Selection(Base, TimestampMixin):
    __tablename__ = "selections"
    __table_args__ = (
        UniqueConstraint("menu_id", "student_id", "day", name="uq_selections_menu_student_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    menu_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("menus.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    parent_id: Mapped[str] = mapped_column(String(64), nullable=False)
    day: Mapped[str] = mapped_column(String(16), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    meal_type: Mapped[str] = mapped_column(String(64), nullable=False)
    special_requirements: Mapped[Optional[str]] = mapped_column(Text)

    def __repr__(self) -> str:
        return (
            f"Selection(id={self.id}, menu_id={self.menu_id}, "
            f"student_id={self.student_id}, day={self.day}, meal_type={self.meal_type})"
        )


class Student(Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    class_name: Mapped[Optional[str]] = mapped_column("class", String(32))

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)
