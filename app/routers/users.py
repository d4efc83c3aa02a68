from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import require_admin, require_manager, require_staff
from app.core.security import hash_password, verify_password
from app.models.user import USER_ROLES, User
from app.schemas.users import ChangePasswordIn, MessageOut, UserOut, UserUpdateIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])

MIN_PASSWORD_LENGTH = 6


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, int(user_id))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/all", response_model=list[UserOut])
async def list_users(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    res = await db.execute(select(User).order_by(User.id.asc()))
    return res.scalars().all()


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_staff),
):
    return await _get_user_or_404(db, user_id)


@router.put("/{user_id}", response_model=MessageOut)
async def update_user(
    user_id: int,
    payload: UserUpdateIn,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
) -> MessageOut:
    if payload.role not in USER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")
    if payload.password and len(payload.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters")

    user = await _get_user_or_404(db, user_id)

    try:
        user.name = payload.name
        user.role = payload.role
        if payload.password:
            user.password_hash = hash_password(payload.password)
        db.add(user)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "user %s updated by %s (role=%s password_changed=%s)",
        user_id, admin_user.id, payload.role, bool(payload.password),
    )
    return MessageOut(message="User updated successfully")


@router.delete("/{user_id}", response_model=MessageOut)
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(require_admin),
) -> MessageOut:
    """Deactivate the account. Orders keep referencing the row, so it is never removed."""
    if int(user_id) == int(admin_user.id):
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    user = await _get_user_or_404(db, user_id)

    try:
        user.is_active = False
        db.add(user)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("user %s deactivated by %s", user_id, admin_user.id)
    return MessageOut(message="User deleted successfully")


@router.post("/{user_id}/change-password", response_model=MessageOut)
async def change_password(
    user_id: int,
    payload: ChangePasswordIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_staff),
) -> MessageOut:
    if not payload.currentPassword or not payload.newPassword:
        raise HTTPException(status_code=400, detail="Current password and new password are required")
    if len(payload.newPassword) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters")

    user = await _get_user_or_404(db, user_id)

    if not verify_password(payload.currentPassword, user.password_hash):
        raise HTTPException(status_code=401, detail="Current password is incorrect")

    try:
        user.password_hash = hash_password(payload.newPassword)
        db.add(user)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("password of user %s changed by %s", user_id, current_user.id)
    return MessageOut(message="Password updated successfully")
