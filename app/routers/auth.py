from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user, require_manager
from app.core.security import create_access_token, hash_password, verify_password
from app.models.user import USER_ROLES, User
from app.schemas.auth import MeResponse, RegisterRequest, TokenOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenOut)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
) -> TokenOut:
    res = await db.execute(select(User).where(User.username == form_data.username))
    user = res.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="Invalid username or password")

    if not user.is_active:
        raise HTTPException(status_code=401, detail="User is inactive")

    if not verify_password(form_data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid username or password")

    return TokenOut(
        access_token=create_access_token(user_id=user.id, role=user.role),
        role=user.role,
        name=user.name,
        id=int(user.id),
    )


@router.post("/register", response_model=MeResponse, status_code=201)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    if payload.role not in USER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")
    if payload.role == "admin" and current_user.role != "admin":
        raise HTTPException(status_code=403, detail="Only admins can create admin users")

    existing = await db.execute(select(User.id).where(User.username == payload.username))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=400, detail="Username already exists")

    try:
        user = User(
            name=payload.name,
            username=payload.username,
            password_hash=hash_password(payload.password),
            role=payload.role,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
    except Exception:
        await db.rollback()
        raise

    logger.info("user %s registered with role %s by user %s", user.username, user.role, current_user.id)
    return user


@router.get("/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)):
    return current_user
