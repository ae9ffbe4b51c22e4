from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import Principal, get_auth_client, get_current_principal
from ..db import get_db
from ..errors import NotFoundError
from ..models import Role
from ..providers.supabase import AuthProviderError, SupabaseAuthClient
from ..schemas import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ProfileResponse,
    ProfileSchema,
    ProfileUpdateRequest,
    RegisterRequest,
    RegisterResponse,
    SessionTokens,
    SessionUser,
)
from ..services.profiles import create_profile, get_profile, get_role, update_profile

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
    session: AsyncSession = Depends(get_db),
):
    try:
        user = await auth_client.sign_up(
            payload.email,
            payload.password,
            metadata={"first_name": payload.firstName, "last_name": payload.lastName},
        )
    except AuthProviderError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except httpx.HTTPError:
        logger.exception("Auth provider unreachable during sign-up email=%s", payload.email)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error.",
        )

    try:
        await create_profile(
            session,
            user_id=user.id,
            email=payload.email,
            first_name=payload.firstName,
            last_name=payload.lastName,
            role=payload.role,
        )
    except SQLAlchemyError:
        # The provider account already exists at this point and is not rolled back.
        logger.exception("Profile creation failed after sign-up user=%s", user.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create user profile.",
        )

    logger.info("User registered user=%s role=%s", user.id, payload.role)
    return RegisterResponse(
        message="User registered successfully. Please confirm your email address.",
        userId=user.id,
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
    session: AsyncSession = Depends(get_db),
):
    try:
        auth_session = await auth_client.sign_in_with_password(payload.email, payload.password)
    except AuthProviderError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid login credentials.")
    except httpx.HTTPError:
        logger.exception("Auth provider unreachable during login")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error.",
        )

    role = None
    try:
        role = await get_role(session, auth_session.user.id)
    except SQLAlchemyError:
        logger.exception("Role lookup failed during login user=%s", auth_session.user.id)
    if role is None:
        logger.warning("No stored role for user=%s; defaulting to parent", auth_session.user.id)

    return LoginResponse(
        user=SessionUser(
            id=auth_session.user.id,
            email=auth_session.user.email,
            role=role or Role.PARENT,
        ),
        session=SessionTokens(
            access_token=auth_session.access_token,
            expires_at=auth_session.expires_at,
        ),
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    principal: Principal = Depends(get_current_principal),
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
):
    try:
        await auth_client.sign_out(principal.token)
    except AuthProviderError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except httpx.HTTPError:
        logger.exception("Auth provider unreachable during logout user=%s", principal.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An error occurred while logging out.",
        )
    return MessageResponse(message="Logged out successfully.")


@router.get("/profile", response_model=ProfileResponse)
async def read_profile(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db),
):
    try:
        profile = await get_profile(session, principal.id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found.")
    return ProfileResponse(profile=ProfileSchema.model_validate(profile))


@router.put("/profile", response_model=ProfileResponse)
async def write_profile(
    payload: ProfileUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    try:
        profile = await update_profile(session, principal.id, changes)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found.")
    except SQLAlchemyError:
        logger.exception("Profile update failed user=%s", principal.id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Failed to update profile.")
    return ProfileResponse(
        message="Profile updated successfully.",
        profile=ProfileSchema.model_validate(profile),
    )
