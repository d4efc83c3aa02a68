from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.meal import Meal
from app.models.order import Order
from app.models.order_meal import OrderMeal
from app.models.ticket import TicketUnit
from app.models.ticket_type import TicketType
from app.models.user import User
from app.services import catalog, inventory, payments as payment_records
from app.services.errors import NotFound, ValidationError
from app.services.pricing import (
    MealLine,
    PaymentLine,
    PricedMealLine,
    TicketLine,
    apply_payments,
    discount_of,
    price_basket,
    round_money,
    to_decimal,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AmendMealLine:
    meal_id: int
    quantity: int
    price: Decimal


@dataclass
class CheckoutResult:
    order: Order
    gross_total: Decimal
    discount: Decimal
    final_total: Decimal
    ticket_ids: list[int] = field(default_factory=list)


@dataclass
class AmendResult:
    order: Order
    previous_total: Decimal
    total_amount: Decimal
    added_ticket_ids: list[int] = field(default_factory=list)
    released_ticket_ids: list[int] = field(default_factory=list)
    payments_replaced: bool = False


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


async def _ensure_buyer(db: AsyncSession, buyer_id: Optional[int]) -> None:
    if buyer_id is None:
        raise ValidationError("Missing user ID")
    res = await db.execute(select(User.id).where(User.id == buyer_id))
    if res.scalar_one_or_none() is None:
        raise NotFound(f"User {buyer_id} not found")


def _check_payments_given(payments: Optional[Sequence[PaymentLine]]) -> None:
    if not payments:
        raise ValidationError("Missing payments")


async def _lock_order(db: AsyncSession, order_id: int) -> Order:
    res = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = res.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found")
    return order


async def _insert_meal_lines(db: AsyncSession, order_id: int, meals: Sequence[PricedMealLine]) -> None:
    # one row per (order, meal): repeated lines fold into a single quantity
    merged: "OrderedDict[int, list]" = OrderedDict()
    for m in meals:
        if m.meal_id in merged:
            merged[m.meal_id][0] += m.quantity
        else:
            merged[m.meal_id] = [m.quantity, m.unit_price]

    db.add_all(
        OrderMeal(order_id=order_id, meal_id=meal_id, quantity=qty, price_at_order=round_money(price))
        for meal_id, (qty, price) in merged.items()
    )
    await db.flush()


async def _create_order(
    db: AsyncSession,
    *,
    buyer_id: int,
    description: Optional[str],
    final_total: Decimal,
    gross_total: Decimal,
) -> Order:
    order = Order(
        user_id=buyer_id,
        description=description or None,
        total_amount=final_total,
        gross_total=gross_total,
    )
    db.add(order)
    await db.flush()  # ensures order.id
    return order


# -------------------------
# Checkout
# -------------------------
async def checkout_new(
    db: AsyncSession,
    *,
    tickets: Sequence[TicketLine] = (),
    meals: Sequence[MealLine] = (),
    buyer_id: Optional[int],
    description: Optional[str] = None,
    payments: Optional[Sequence[PaymentLine]],
) -> CheckoutResult:
    """
    Sell fresh ticket units plus meals in one transaction.

    Unknown/archived catalog ids and non-positive quantities are dropped from
    the basket; payments must settle the remaining basket exactly.
    """
    if buyer_id is None:
        raise ValidationError("Missing user ID")
    _check_payments_given(payments)

    try:
        await _ensure_buyer(db, buyer_id)

        ticket_prices = await catalog.ticket_type_prices(db, [t.ticket_type_id for t in tickets])
        meal_prices = await catalog.meal_prices(db, [m.meal_id for m in meals])

        basket = price_basket(tickets, meals, ticket_prices, meal_prices)
        if basket.is_empty:
            raise ValidationError("No valid tickets or meals to sell")

        settlement = apply_payments(basket.gross_total, payments)

        order = await _create_order(
            db,
            buyer_id=buyer_id,
            description=description,
            final_total=settlement.final_total,
            gross_total=settlement.gross_total,
        )

        ticket_ids: list[int] = []
        for line in basket.tickets:
            units = await inventory.sell_new(
                db,
                ticket_type_id=line.ticket_type_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                order_id=order.id,
            )
            ticket_ids.extend(int(u.id) for u in units)

        await _insert_meal_lines(db, order.id, basket.meals)
        await payment_records.replace_all(db, order.id, payments)

        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info(
        "checkout order=%s tickets=%d meals=%d gross=%s discount=%s final=%s",
        order.id, len(ticket_ids), len(basket.meals),
        settlement.gross_total, settlement.discount, settlement.final_total,
    )

    return CheckoutResult(
        order=order,
        gross_total=settlement.gross_total,
        discount=settlement.discount,
        final_total=settlement.final_total,
        ticket_ids=ticket_ids,
    )


async def checkout_existing(
    db: AsyncSession,
    *,
    unit_ids: Sequence[int],
    buyer_id: Optional[int],
    description: Optional[str] = None,
    payments: Optional[Sequence[PaymentLine]],
    meals: Sequence[MealLine] = (),
) -> CheckoutResult:
    """
    Sell pre-generated units. Every unit must exist and be available and
    valid, otherwise nothing is sold.
    """
    if not unit_ids:
        raise ValidationError("No ticket IDs provided")
    if buyer_id is None:
        raise ValidationError("Missing user ID")
    _check_payments_given(payments)

    try:
        await _ensure_buyer(db, buyer_id)

        sellable = await inventory.lock_sellable(db, unit_ids)

        ticket_lines = [TicketLine(ticket_type_id=s.ticket_type_id, quantity=1) for s in sellable]
        ticket_prices = {s.ticket_type_id: s.price for s in sellable}
        meal_prices = await catalog.meal_prices(db, [m.meal_id for m in meals])

        basket = price_basket(ticket_lines, meals, ticket_prices, meal_prices)
        settlement = apply_payments(basket.gross_total, payments)

        order = await _create_order(
            db,
            buyer_id=buyer_id,
            description=description,
            final_total=settlement.final_total,
            gross_total=settlement.gross_total,
        )

        sold = await inventory.sell_existing(db, unit_ids=[s.unit_id for s in sellable], order_id=order.id)

        await _insert_meal_lines(db, order.id, basket.meals)
        await payment_records.replace_all(db, order.id, payments)

        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info(
        "checkout-existing order=%s units=%s final=%s",
        order.id, [s.unit_id for s in sold], settlement.final_total,
    )

    return CheckoutResult(
        order=order,
        gross_total=settlement.gross_total,
        discount=settlement.discount,
        final_total=settlement.final_total,
        ticket_ids=[s.unit_id for s in sold],
    )


# -------------------------
# Amendment
# -------------------------
async def amend(
    db: AsyncSession,
    *,
    order_id: int,
    added_tickets: Sequence[TicketLine] = (),
    removed_tickets: Sequence[TicketLine] = (),
    added_meals: Sequence[AmendMealLine] = (),
    removed_meals: Sequence[MealLine] = (),
    new_payments: Optional[Sequence[PaymentLine]] = None,
    skip_payment_validation: bool = True,
) -> AmendResult:
    """
    Edit an existing order, starting from its stored total.

    Added tickets are repriced from the catalog; added meals are taken at
    the price given in the request. A meal removal subtracts the requested
    quantity times the line's stored price even when it exceeds the line's
    quantity. New payments replace the old ones verbatim unless
    ``skip_payment_validation`` is False, in which case they must settle the
    new total.
    """
    try:
        order = await _lock_order(db, order_id)

        previous = to_decimal(order.total_amount)
        running = previous
        added_ids: list[int] = []
        released_ids: list[int] = []

        # 1) added tickets at current catalog price
        for line in added_tickets:
            if not _is_positive_int(line.quantity):
                raise ValidationError("Ticket quantity must be >= 1")
            price = await catalog.get_ticket_type_price(db, line.ticket_type_id)
            units = await inventory.sell_new(
                db,
                ticket_type_id=line.ticket_type_id,
                quantity=line.quantity,
                unit_price=price,
                order_id=order.id,
            )
            added_ids.extend(int(u.id) for u in units)
            running += round_money(price * line.quantity)

        # 2) removed tickets: release what exists, credit stored sold prices
        for line in removed_tickets:
            if not _is_positive_int(line.quantity):
                raise ValidationError("Ticket quantity must be >= 1")
            released = await inventory.remove(
                db,
                order_id=order.id,
                ticket_type_id=line.ticket_type_id,
                count=line.quantity,
            )
            released_ids.extend(released.unit_ids)
            running -= released.amount

        # 3) added meals at request price
        for m in added_meals:
            if not _is_positive_int(m.quantity):
                raise ValidationError("Meal quantity must be >= 1")
            price = to_decimal(m.price)
            if price <= 0:
                raise ValidationError("Meal price must be positive")
            await catalog.get_meal_price(db, m.meal_id)  # existence

            line = await _get_meal_line(db, order.id, m.meal_id)
            if line is not None:
                line.quantity = int(line.quantity) + m.quantity
            else:
                db.add(
                    OrderMeal(
                        order_id=order.id,
                        meal_id=m.meal_id,
                        quantity=m.quantity,
                        price_at_order=round_money(price),
                    )
                )
            await db.flush()
            running += round_money(price * m.quantity)

        # 4) removed meals: not clamped to the line's quantity
        for m in removed_meals:
            if not _is_positive_int(m.quantity):
                raise ValidationError("Meal quantity must be >= 1")
            line = await _get_meal_line(db, order.id, m.meal_id)
            if line is None:
                logger.warning("order=%s has no meal line %s to remove", order.id, m.meal_id)
                continue

            running -= round_money(to_decimal(line.price_at_order) * m.quantity)
            remaining = int(line.quantity) - m.quantity
            if remaining <= 0:
                await db.delete(line)
            else:
                line.quantity = remaining
            await db.flush()

        # 5) write the running total back
        running = round_money(running)
        delta = running - previous
        order.total_amount = running
        if order.gross_total is not None:
            order.gross_total = round_money(to_decimal(order.gross_total) + delta)

        # 6) replace payments
        replaced = new_payments is not None
        if replaced:
            if not skip_payment_validation:
                apply_payments(running + discount_of(new_payments), new_payments)
            await payment_records.replace_all(db, order.id, new_payments)

        await db.flush()
        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info(
        "amend order=%s total %s -> %s added=%d released=%d payments_replaced=%s",
        order.id, previous, running, len(added_ids), len(released_ids), replaced,
    )

    return AmendResult(
        order=order,
        previous_total=previous,
        total_amount=running,
        added_ticket_ids=added_ids,
        released_ticket_ids=released_ids,
        payments_replaced=replaced,
    )


async def _get_meal_line(db: AsyncSession, order_id: int, meal_id: int) -> Optional[OrderMeal]:
    res = await db.execute(
        select(OrderMeal)
        .where(OrderMeal.order_id == order_id, OrderMeal.meal_id == meal_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


# -------------------------
# Reads
# -------------------------
def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


async def _order_details(db: AsyncSession, orders: list[Order]) -> list[dict]:
    order_ids = [int(o.id) for o in orders]
    if not order_ids:
        return []

    user_ids = list({int(o.user_id) for o in orders})
    res = await db.execute(select(User.id, User.name).where(User.id.in_(user_ids)))
    names = {int(r[0]): (r[1] or "") for r in res.all()}

    tickets_map: dict[int, list[dict]] = {}
    res = await db.execute(
        select(TicketUnit, TicketType)
        .join(TicketType, TicketType.id == TicketUnit.ticket_type_id)
        .where(TicketUnit.order_id.in_(order_ids))
        .order_by(TicketUnit.id.asc())
    )
    for t, tt in res.all():
        tickets_map.setdefault(int(t.order_id), []).append(
            {
                "ticket_id": int(t.id),
                "ticket_type_id": int(tt.id),
                "category": tt.category,
                "subcategory": tt.subcategory,
                "status": t.status,
                "valid": bool(t.valid),
                "sold_price": t.sold_price,
            }
        )

    meals_map: dict[int, list[dict]] = {}
    res = await db.execute(
        select(OrderMeal, Meal)
        .join(Meal, Meal.id == OrderMeal.meal_id)
        .where(OrderMeal.order_id.in_(order_ids))
        .order_by(OrderMeal.id.asc())
    )
    for om, m in res.all():
        meals_map.setdefault(int(om.order_id), []).append(
            {
                "meal_id": int(m.id),
                "name": m.name,
                "quantity": int(om.quantity),
                "price_at_order": om.price_at_order,
            }
        )

    payments_map = await payment_records.list_for_orders(db, order_ids)

    out = []
    for o in orders:
        pays = payments_map.get(int(o.id), [])
        out.append(
            {
                "order_id": int(o.id),
                "user_id": int(o.user_id),
                "user_name": names.get(int(o.user_id), ""),
                "description": o.description,
                "created_at": o.created_at,
                "total_amount": o.total_amount,
                "gross_total": o.gross_total,
                "discount": payment_records.discount_total(pays),
                "tickets": tickets_map.get(int(o.id), []),
                "meals": meals_map.get(int(o.id), []),
                "payments": [{"method": p.method, "amount": p.amount} for p in pays],
            }
        )
    return out


async def get_order(db: AsyncSession, order_id: int) -> dict:
    res = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    order = res.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found")
    return (await _order_details(db, [order]))[0]


async def list_orders_between(
    db: AsyncSession,
    *,
    start: datetime,
    end: datetime,
    limit: int = 500,
    offset: int = 0,
) -> list[dict]:
    if end < start:
        raise ValidationError("endDate must not be before startDate")

    res = await db.execute(
        select(Order)
        .where(Order.created_at >= start, Order.created_at < end)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    return await _order_details(db, list(res.scalars().all()))


async def list_orders_on(db: AsyncSession, *, day: date, limit: int = 500) -> list[dict]:
    start, end = _day_bounds(day)
    return await list_orders_between(db, start=start, end=end, limit=limit)
