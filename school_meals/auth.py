from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_db
from .models import Profile, Role
from .providers.supabase import AuthProviderError, SupabaseAuthClient

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Identity resolved from the caller's bearer token."""

    id: str
    email: Optional[str]
    token: str


def get_auth_client(request: Request) -> SupabaseAuthClient:
    client = getattr(request.app.state, "auth_client", None)
    if client is None:
        raise RuntimeError("Auth provider not configured")
    return client


async def get_current_principal(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
) -> Principal:
    if not creds or creds.scheme.lower() != "bearer" or not creds.credentials:
        # HTTPBearer yields None both for an absent header and for a non-Bearer scheme
        if request.headers.get("Authorization"):
            detail = "Access denied. Malformed authorization header; expected 'Bearer <token>'."
        else:
            detail = "Access denied. No authentication token provided."
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
    token = creds.credentials
    try:
        user = await auth_client.get_user(token)
    except AuthProviderError as exc:
        logger.info("Token rejected by auth provider status=%s code=%s", exc.status_code, exc.code)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired authentication token.",
        )
    except httpx.HTTPError:
        logger.exception("Auth provider unreachable during token verification")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error.",
        )
    return Principal(id=user.id, email=user.email, token=token)


async def require_admin(
    principal: Optional[Principal] = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db),
) -> Principal:
    """Allow the request only if the caller's stored role is admin.

    The role is read on every call; there is no caching.
    """
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User is not authenticated.")
    try:
        role = await session.scalar(select(Profile.role).where(Profile.id == principal.id))
    except SQLAlchemyError:
        logger.exception("Role lookup failed user=%s", principal.id)
        role = None
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to verify user role.",
        )
    if role != Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to access this resource.",
        )
    return principal
