from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Numeric, Text, UniqueConstraint, false, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base, BigId


class TicketType(Base):
    __tablename__ = "ticket_types"
    __table_args__ = (
        UniqueConstraint("category", "subcategory", name="ticket_types_category_subcategory_key"),
        CheckConstraint("price > 0", name="ticket_types_price_check"),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)

    category: Mapped[str] = mapped_column(Text, nullable=False)
    subcategory: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Current price only; history lives in tickets.sold_price
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    archived: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
