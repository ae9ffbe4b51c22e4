from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


# Auth / profile


class RegisterRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)
    firstName: str = Field(min_length=1)
    lastName: str = Field(min_length=1)
    role: Literal["parent", "admin"] = "parent"


class LoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ChildRecord(BaseModel):
    """One child embedded in a parent's profile; extra descriptive fields are kept."""

    id: str = Field(min_length=1)

    model_config = ConfigDict(extra="allow")


class ProfileUpdateRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    children: Optional[List[ChildRecord]] = None


class ProfileSchema(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    phone: Optional[str] = None
    address: Optional[str] = None
    children: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SessionUser(BaseModel):
    id: str
    email: Optional[str] = None
    role: str


class SessionTokens(BaseModel):
    access_token: str
    expires_at: Optional[int] = None


class RegisterResponse(BaseModel):
    success: bool = True
    message: str
    userId: str


class LoginResponse(BaseModel):
    success: bool = True
    user: SessionUser
    session: SessionTokens


class ProfileResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    profile: ProfileSchema


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# Menus


class MenuRequest(BaseModel):
    week_start: dt.date
    week_end: dt.date
    menu_data: Dict[str, Any] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_range(self) -> "MenuRequest":
        if self.week_end < self.week_start:
            raise ValueError("week_end must not be before week_start")
        return self


class MenuSchema(BaseModel):
    id: UUID
    week_start: dt.date
    week_end: dt.date
    menu_data: Dict[str, Any]
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MenuSummary(BaseModel):
    id: UUID
    week_start: dt.date
    week_end: dt.date
    created_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MenuResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    menu: MenuSchema


class MenuHistoryResponse(BaseModel):
    success: bool = True
    menus: List[MenuSummary]
    total: int
    limit: int
    offset: int


# Selections


class SelectionRequest(BaseModel):
    menu_id: UUID
    student_id: str = Field(min_length=1)
    day: str = Field(min_length=1)
    meal_type: str = Field(min_length=1)
    special_requirements: Optional[str] = None


class SelectionSchema(BaseModel):
    id: UUID
    menu_id: UUID
    student_id: str
    parent_id: str
    day: str
    date: dt.date
    meal_type: str
    special_requirements: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SelectionResponse(BaseModel):
    success: bool = True
    message: str
    selection: SelectionSchema


class SelectionListResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    menu: Optional[MenuSchema] = None
    selections: List[SelectionSchema] = Field(default_factory=list)


class StudentListResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    students: List[Dict[str, Any]] = Field(default_factory=list)
