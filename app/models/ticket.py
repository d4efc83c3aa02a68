from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base, BigId


class TicketStatus(str, Enum):
    AVAILABLE = "available"
    SOLD = "sold"
    REFUNDED = "refunded"

    def can_become(self, target: "TicketStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    TicketStatus.AVAILABLE: frozenset({TicketStatus.SOLD}),
    TicketStatus.SOLD: frozenset({TicketStatus.AVAILABLE, TicketStatus.REFUNDED}),
    TicketStatus.REFUNDED: frozenset({TicketStatus.AVAILABLE}),
}


class TicketUnit(Base):
    """One admission unit. Sale fields are set iff status == 'sold'."""

    __tablename__ = "tickets"
    __table_args__ = (
        CheckConstraint(
            "status IN ('available','sold','refunded')",
            name="tickets_status_check",
        ),
        CheckConstraint(
            "(status = 'sold') = (sold_price IS NOT NULL AND sold_at IS NOT NULL AND order_id IS NOT NULL)",
            name="tickets_sale_fields_check",
        ),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)

    ticket_type_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("ticket_types.id"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=TicketStatus.AVAILABLE.value)

    # independent of status: a sold unit can be revoked
    valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    sold_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    sold_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    order_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("orders.id"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


Index("ix_tickets_order_type_status", TicketUnit.order_id, TicketUnit.ticket_type_id, TicketUnit.status)
Index("ix_tickets_status_sold_at", TicketUnit.status, TicketUnit.sold_at)
