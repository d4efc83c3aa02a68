from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, Numeric, Text, false, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base, BigId

AGE_GROUPS = ("adult", "child", "all")


class Meal(Base):
    __tablename__ = "meals"
    __table_args__ = (
        CheckConstraint("price > 0", name="meals_price_check"),
        CheckConstraint("age_group IN ('adult','child','all')", name="meals_age_group_check"),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    age_group: Mapped[str] = mapped_column(Text, nullable=False)

    archived: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
