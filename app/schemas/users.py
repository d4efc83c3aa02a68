from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    username: str
    role: str
    is_active: bool
    created_at: datetime | None = None


class UserUpdateIn(BaseModel):
    name: str = Field(..., min_length=1)
    role: str
    # empty or missing keeps the current password
    password: Optional[str] = None


class ChangePasswordIn(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = None


class MessageOut(BaseModel):
    message: str
