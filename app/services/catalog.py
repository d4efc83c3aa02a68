from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select, tuple_, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.meal import AGE_GROUPS, Meal
from app.models.ticket_type import TicketType
from app.services.errors import NotFound, ValidationError
from app.services.pricing import to_decimal

logger = logging.getLogger(__name__)


def _positive_price(value, label: str) -> Decimal:
    try:
        price = to_decimal(value)
    except ValidationError:
        raise ValidationError(f"Invalid price for {label}")
    if not price.is_finite() or price <= 0:
        raise ValidationError(f"Invalid price for {label}")
    return price


# -------------------------
# Price lookups
# -------------------------
async def get_ticket_type_price(db: AsyncSession, ticket_type_id: int) -> Decimal:
    res = await db.execute(select(TicketType.price).where(TicketType.id == ticket_type_id))
    price = res.scalar_one_or_none()
    if price is None:
        raise NotFound(f"Ticket type {ticket_type_id} not found")
    return to_decimal(price)


async def get_meal_price(db: AsyncSession, meal_id: int) -> Decimal:
    res = await db.execute(select(Meal.price).where(Meal.id == meal_id))
    price = res.scalar_one_or_none()
    if price is None:
        raise NotFound(f"Meal {meal_id} not found")
    return to_decimal(price)


async def ticket_type_prices(
    db: AsyncSession,
    ticket_type_ids: Iterable[int],
    *,
    include_archived: bool = False,
) -> dict[int, Decimal]:
    ids = list({int(x) for x in ticket_type_ids})
    if not ids:
        return {}
    stmt = select(TicketType.id, TicketType.price).where(TicketType.id.in_(ids))
    if not include_archived:
        stmt = stmt.where(TicketType.archived.is_(False))
    res = await db.execute(stmt)
    return {int(r[0]): to_decimal(r[1]) for r in res.all()}


async def meal_prices(
    db: AsyncSession,
    meal_ids: Iterable[int],
    *,
    include_archived: bool = False,
) -> dict[int, Decimal]:
    ids = list({int(x) for x in meal_ids})
    if not ids:
        return {}
    stmt = select(Meal.id, Meal.price).where(Meal.id.in_(ids))
    if not include_archived:
        stmt = stmt.where(Meal.archived.is_(False))
    res = await db.execute(stmt)
    return {int(r[0]): to_decimal(r[1]) for r in res.all()}


# -------------------------
# Ticket types
# -------------------------
async def list_ticket_types(db: AsyncSession, *, archived: Optional[bool] = None) -> list[TicketType]:
    stmt = select(TicketType).order_by(TicketType.id)
    if archived is not None:
        stmt = stmt.where(TicketType.archived.is_(archived))
    res = await db.execute(stmt)
    return list(res.scalars().all())


async def add_ticket_types(db: AsyncSession, entries: list[dict]) -> list[TicketType]:
    """
    Insert ticket types; (category, subcategory) pairs that already exist
    are skipped. Returns only the newly created rows.
    """
    if not entries:
        raise ValidationError("Provide an array of ticket types")

    for e in entries:
        _positive_price(e.get("price"), f"{e.get('category')} - {e.get('subcategory')}")

    pairs = [(e["category"], e["subcategory"]) for e in entries]
    res = await db.execute(
        select(TicketType.category, TicketType.subcategory).where(
            tuple_(TicketType.category, TicketType.subcategory).in_(pairs)
        )
    )
    existing = {(r[0], r[1]) for r in res.all()}

    created: list[TicketType] = []
    try:
        for e in entries:
            key = (e["category"], e["subcategory"])
            if key in existing:
                continue
            existing.add(key)
            tt = TicketType(
                category=e["category"],
                subcategory=e["subcategory"],
                description=e.get("description"),
                price=to_decimal(e["price"]),
            )
            db.add(tt)
            created.append(tt)

        await db.commit()
        for tt in created:
            await db.refresh(tt)
        return created

    except Exception:
        await db.rollback()
        raise


async def update_ticket_prices(db: AsyncSession, prices: list[tuple[int, object]]) -> list[TicketType]:
    valid = [(int(i), to_decimal(p)) for i, p in prices if i and to_decimal(p) > 0]
    if not valid:
        raise ValidationError("No valid tickets to update")

    try:
        for type_id, price in valid:
            await db.execute(update(TicketType).where(TicketType.id == type_id).values(price=price))

        res = await db.execute(
            select(TicketType)
            .where(TicketType.id.in_([i for i, _ in valid]))
            .order_by(TicketType.id)
            .execution_options(populate_existing=True)
        )
        updated = list(res.scalars().all())
        await db.commit()

        logger.info("ticket prices updated: %s", {tt.id: str(tt.price) for tt in updated})
        return updated

    except Exception:
        await db.rollback()
        raise


async def set_category_archived(db: AsyncSession, *, category: str, archived: bool) -> list[TicketType]:
    try:
        await db.execute(
            update(TicketType).where(TicketType.category == category).values(archived=archived)
        )
        res = await db.execute(
            select(TicketType)
            .where(TicketType.category == category)
            .order_by(TicketType.id)
            .execution_options(populate_existing=True)
        )
        rows = list(res.scalars().all())
        if not rows:
            raise NotFound("Category not found.")

        await db.commit()
        return rows

    except Exception:
        await db.rollback()
        raise


# -------------------------
# Meals
# -------------------------
def _check_meal_entry(entry: dict) -> None:
    if not entry.get("name") or entry.get("age_group") not in AGE_GROUPS:
        raise ValidationError(f"Invalid meal entry: {entry}")
    _positive_price(entry.get("price"), entry["name"])


async def list_meals(db: AsyncSession, *, archived: Optional[bool] = None) -> list[Meal]:
    stmt = select(Meal).order_by(Meal.id)
    if archived is not None:
        stmt = stmt.where(Meal.archived.is_(archived))
    res = await db.execute(stmt)
    return list(res.scalars().all())


async def add_meals(db: AsyncSession, entries: list[dict]) -> list[Meal]:
    if not entries:
        raise ValidationError("Provide an array of meals")
    for e in entries:
        _check_meal_entry(e)

    created: list[Meal] = []
    try:
        for e in entries:
            m = Meal(
                name=e["name"],
                description=e.get("description") or "",
                price=to_decimal(e["price"]),
                age_group=e["age_group"],
            )
            db.add(m)
            created.append(m)

        await db.commit()
        for m in created:
            await db.refresh(m)
        return created

    except Exception:
        await db.rollback()
        raise


async def update_meals(db: AsyncSession, entries: list[dict]) -> list[Meal]:
    if not entries:
        raise ValidationError("No meals provided")
    for e in entries:
        if not e.get("id"):
            raise ValidationError(f"Invalid meal update entry: {e}")
        _check_meal_entry(e)

    try:
        for e in entries:
            await db.execute(
                update(Meal)
                .where(Meal.id == int(e["id"]))
                .values(
                    name=e["name"],
                    description=e.get("description") or "",
                    price=to_decimal(e["price"]),
                    age_group=e["age_group"],
                )
            )

        res = await db.execute(
            select(Meal)
            .where(Meal.id.in_([int(e["id"]) for e in entries]))
            .order_by(Meal.id)
            .execution_options(populate_existing=True)
        )
        updated = list(res.scalars().all())
        await db.commit()
        return updated

    except Exception:
        await db.rollback()
        raise
