from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.security import ACCESS_TOKEN_TYPE, TokenError, decode_token
from app.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    try:
        claims = decode_token(token)
    except TokenError as e:
        raise _unauthorized(str(e))

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise _unauthorized("Not an access token")

    try:
        user_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Invalid user id in token")

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise _unauthorized("Account disabled or removed")

    return user


def require_roles(*roles: str) -> Callable:
    """Dependency factory: the logged-in staff member must hold one of ``roles``."""

    async def _checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of: {', '.join(roles)}",
            )
        return current_user

    return _checker


# user administration
require_admin = require_roles("admin")
# back office: catalog, inventory corrections, amendments, reports
require_manager = require_roles("admin", "accountant")
# anyone working a till
require_staff = require_roles("admin", "accountant", "cashier")
