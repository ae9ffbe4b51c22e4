from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health(request: Request):
    s = request.app.state.settings
    return {
        "status": "ok",
        "service": s.app_name,
        "env": s.environment,
    }
