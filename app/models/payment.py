from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base, BigId


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    VOUCHER = "voucher"
    # not tendered money: a negative adjustment against the gross total
    DISCOUNT = "discount"
    # deferred payment; must be the only line on its order
    POSTPONED = "postponed"


PAYMENT_METHODS = frozenset(m.value for m in PaymentMethod)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint(
            "method IN ('cash','card','bank_transfer','voucher','discount','postponed')",
            name="payments_method_check",
        ),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)

    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    method: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


Index("ix_payments_order_id", Payment.order_id)
