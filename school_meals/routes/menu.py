from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import Principal, require_admin
from ..db import get_db
from ..errors import NotFoundError
from ..schemas import MenuHistoryResponse, MenuRequest, MenuResponse, MenuSchema, MenuSummary
from ..services.export import build_menu_export
from ..services.menus import get_latest_menu, get_menu, get_menu_by_week_start, list_menu_history, save_menu

router = APIRouter(prefix="/menu", tags=["menu"])

logger = logging.getLogger(__name__)


@router.get("", response_model=MenuResponse)
async def current_menu(session: AsyncSession = Depends(get_db)):
    try:
        menu = await get_latest_menu(session)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No weekly menu found.")
    return MenuResponse(menu=MenuSchema.model_validate(menu))


@router.post("", response_model=MenuResponse, status_code=status.HTTP_201_CREATED)
async def upsert_menu(
    payload: MenuRequest,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db),
):
    try:
        menu, created = await save_menu(
            session,
            week_start=payload.week_start,
            week_end=payload.week_end,
            menu_data=payload.menu_data,
            actor_id=principal.id,
        )
    except (SQLAlchemyError, NotFoundError):
        logger.exception("Saving menu failed week_start=%s", payload.week_start)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Failed to save menu.")
    logger.info("Menu %s menu=%s by=%s", "created" if created else "updated", menu.id, principal.id)
    return MenuResponse(
        message="Menu created successfully." if created else "Menu updated successfully.",
        menu=MenuSchema.model_validate(menu),
    )


@router.get("/export")
async def export_menu(
    menu_id: Optional[str] = Query(default=None),
    week_start: Optional[dt.date] = Query(default=None),
    week_end: Optional[dt.date] = Query(default=None),
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db),
):
    if not menu_id and (week_start is None or week_end is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please provide menu_id or both week_start and week_end.",
        )

    try:
        if menu_id:
            menu = await get_menu(session, menu_id)
        else:
            menu = await get_menu_by_week_start(session, week_start)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Menu not found.")

    try:
        filename, csv_text = await build_menu_export(session, menu)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No selections found for this menu.")
    except SQLAlchemyError:
        logger.exception("Loading selections for export failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load selections.",
        )

    return Response(
        content=csv_text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/history", response_model=MenuHistoryResponse)
async def menu_history(
    request: Request,
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_db),
):
    settings = request.app.state.settings
    limit = min(limit or settings.history_default_limit, settings.history_max_limit)
    try:
        menus, total = await list_menu_history(session, limit=limit, offset=offset)
    except SQLAlchemyError:
        logger.exception("Menu history query failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load menu history.",
        )
    return MenuHistoryResponse(
        menus=[MenuSummary.model_validate(menu) for menu in menus],
        total=total,
        limit=limit,
        offset=offset,
    )
