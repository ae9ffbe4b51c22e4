from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import Principal, get_current_principal
from ..db import get_db
from ..errors import NotFoundError, OwnershipError
from ..schemas import (
    MenuSchema,
    MessageResponse,
    SelectionListResponse,
    SelectionRequest,
    SelectionResponse,
    SelectionSchema,
    StudentListResponse,
)
from ..services.menus import get_menu, resolve_menu
from ..services.profiles import ensure_owns_student, get_child_ids, get_profile
from ..services.selections import (
    delete_selection,
    get_selection,
    list_selections_for_children,
    save_selection,
)

router = APIRouter(prefix="/selections", tags=["selections"])

logger = logging.getLogger(__name__)

NO_CHILDREN_MESSAGE = "No registered children."


def _profile_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found.")


@router.get("", response_model=SelectionListResponse)
async def my_selections(
    menu_id: Optional[str] = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db),
):
    try:
        child_ids = await get_child_ids(session, principal.id)
    except NotFoundError:
        raise _profile_not_found()
    if not child_ids:
        return SelectionListResponse(message=NO_CHILDREN_MESSAGE, selections=[])

    try:
        menu = await resolve_menu(session, menu_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Menu not found.")

    try:
        selections = await list_selections_for_children(session, menu.id, child_ids)
    except SQLAlchemyError:
        logger.exception("Selection listing failed user=%s menu=%s", principal.id, menu.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load selections.",
        )
    return SelectionListResponse(
        menu=MenuSchema.model_validate(menu),
        selections=[SelectionSchema.model_validate(s) for s in selections],
    )


@router.post("", response_model=SelectionResponse, status_code=status.HTTP_201_CREATED)
async def upsert_selection(
    payload: SelectionRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db),
):
    try:
        child_ids = await get_child_ids(session, principal.id)
    except NotFoundError:
        raise _profile_not_found()
    try:
        ensure_owns_student(child_ids, payload.student_id)
    except OwnershipError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to manage meals for this student.",
        )

    try:
        menu = await get_menu(session, payload.menu_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Menu not found.")

    try:
        selection, created = await save_selection(
            session,
            menu=menu,
            student_id=payload.student_id,
            day=payload.day,
            meal_type=payload.meal_type,
            special_requirements=payload.special_requirements,
            parent_id=principal.id,
            date_mode=request.app.state.settings.selection_date_mode,
        )
    except SQLAlchemyError:
        logger.exception("Saving selection failed user=%s student=%s", principal.id, payload.student_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Failed to save selection.")

    return SelectionResponse(
        message="Selection created successfully." if created else "Selection updated successfully.",
        selection=SelectionSchema.model_validate(selection),
    )


@router.get("/students", response_model=StudentListResponse)
async def my_students(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db),
):
    try:
        profile = await get_profile(session, principal.id)
    except NotFoundError:
        raise _profile_not_found()
    if not profile.children:
        return StudentListResponse(message=NO_CHILDREN_MESSAGE, students=[])
    return StudentListResponse(students=list(profile.children))


@router.delete("/{selection_id}", response_model=MessageResponse)
async def remove_selection(
    selection_id: str,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db),
):
    try:
        selection = await get_selection(session, selection_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Selection not found.")
    try:
        child_ids = await get_child_ids(session, principal.id)
    except NotFoundError:
        raise _profile_not_found()

    try:
        await delete_selection(session, selection, child_ids)
    except OwnershipError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not allowed to manage this selection.",
        )
    except SQLAlchemyError:
        logger.exception("Deleting selection failed selection=%s", selection_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Failed to delete selection.")
    return MessageResponse(message="Selection deleted successfully.")
