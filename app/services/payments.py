from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payment import PAYMENT_METHODS, Payment
from app.services.errors import InvalidInput
from app.services.pricing import PaymentLine, discount_of, round_money


def _method_value(p: PaymentLine) -> str:
    # accepts PaymentMethod members as well as raw strings
    return str(getattr(p.method, "value", p.method))


async def replace_all(db: AsyncSession, order_id: int, payments: Sequence[PaymentLine]) -> list[Payment]:
    """
    Replace the payment breakdown of an order wholesale.

    Amounts are trusted; only the method enum is enforced here.
    Does not commit.
    """
    unknown = sorted({_method_value(p) for p in payments if _method_value(p) not in PAYMENT_METHODS})
    if unknown:
        raise InvalidInput(f"Unknown payment method(s): {', '.join(unknown)}")

    await db.execute(delete(Payment).where(Payment.order_id == order_id))

    rows = [
        Payment(
            order_id=order_id,
            method=_method_value(p),
            amount=round_money(p.amount),
        )
        for p in payments
    ]
    db.add_all(rows)
    await db.flush()
    return rows


async def list_for(db: AsyncSession, order_id: int) -> list[Payment]:
    res = await db.execute(
        select(Payment).where(Payment.order_id == order_id).order_by(Payment.id.asc())
    )
    return list(res.scalars().all())


async def list_for_orders(db: AsyncSession, order_ids: Sequence[int]) -> dict[int, list[Payment]]:
    if not order_ids:
        return {}
    res = await db.execute(
        select(Payment).where(Payment.order_id.in_(order_ids)).order_by(Payment.id.asc())
    )
    out: dict[int, list[Payment]] = {}
    for p in res.scalars().all():
        out.setdefault(int(p.order_id), []).append(p)
    return out


def discount_total(payments: Sequence[Payment]) -> Decimal:
    return discount_of([PaymentLine(method=p.method, amount=p.amount) for p in payments])
