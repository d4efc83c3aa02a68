from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ticket import TicketStatus, TicketUnit
from app.models.ticket_type import TicketType
from app.services.errors import ValidationError
from app.services.pricing import ZERO, round_money, to_decimal


def _range_bounds(start_day: date, end_day: date) -> tuple[datetime, datetime]:
    if end_day < start_day:
        raise ValidationError("endDate must not be before startDate")
    start = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_day, time.min, tzinfo=timezone.utc) + timedelta(days=1)
    return start, end


async def ticket_revenue_between(db: AsyncSession, *, start_day: date, end_day: date) -> list[dict]:
    """
    Sold, valid tickets grouped by category/subcategory, both days inclusive.
    """
    start, end = _range_bounds(start_day, end_day)

    stmt = (
        select(
            TicketType.category,
            TicketType.subcategory,
            func.count(TicketUnit.id),
            func.sum(TicketUnit.sold_price),
        )
        .join(TicketType, TicketType.id == TicketUnit.ticket_type_id)
        .where(
            TicketUnit.valid.is_(True),
            TicketUnit.status == TicketStatus.SOLD.value,
            TicketUnit.sold_at >= start,
            TicketUnit.sold_at < end,
        )
        .group_by(TicketType.category, TicketType.subcategory)
        .order_by(TicketType.category, TicketType.subcategory)
    )

    res = await db.execute(stmt)
    return [
        {
            "category": r[0],
            "subcategory": r[1],
            "total_tickets": int(r[2]),
            "total_revenue": round_money(to_decimal(r[3]) if r[3] is not None else ZERO),
        }
        for r in res.all()
    ]


async def ticket_revenue_on(db: AsyncSession, *, day: date) -> list[dict]:
    return await ticket_revenue_between(db, start_day=day, end_day=day)
