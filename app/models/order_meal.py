from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base, BigId


class OrderMeal(Base):
    __tablename__ = "order_meals"
    __table_args__ = (
        UniqueConstraint("order_id", "meal_id", name="order_meals_order_meal_key"),
        CheckConstraint("quantity > 0", name="order_meals_quantity_check"),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)

    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    meal_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("meals.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price_at_order: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
