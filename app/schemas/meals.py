from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class MealIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str | None = None
    price: Decimal
    age_group: str


class MealUpdateIn(MealIn):
    id: int = Field(..., gt=0)


class AddMealsIn(BaseModel):
    meals: List[MealIn] = Field(default_factory=list)


class UpdateMealsIn(BaseModel):
    meals: List[MealUpdateIn] = Field(default_factory=list)


class MealOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    price: Decimal
    age_group: str
    archived: bool
    created_at: datetime | None = None
