from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import require_manager, require_staff
from app.models.user import User
from app.schemas.meals import AddMealsIn, MealOut, UpdateMealsIn
from app.services import catalog

router = APIRouter(prefix="/meals", tags=["Meals"])


@router.get("", response_model=list[MealOut])
async def list_meals(
    archived: Optional[bool] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_staff),
):
    return await catalog.list_meals(db, archived=archived)


@router.post("/add", response_model=list[MealOut], status_code=201)
async def add_meals(
    body: AddMealsIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    return await catalog.add_meals(db, [m.model_dump() for m in body.meals])


@router.put("/edit", response_model=list[MealOut])
async def update_meals(
    body: UpdateMealsIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    return await catalog.update_meals(db, [m.model_dump() for m in body.meals])
