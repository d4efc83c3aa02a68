"""
Ticket unit ledger.

Status writes are compare-and-set against the expected prior status and are
issued only after the affected rows were locked with SELECT ... FOR UPDATE
(always in id order). Nothing in this module commits: the calling
order/ticket operation owns the transaction.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.order import Order
from app.models.ticket import TicketStatus, TicketUnit
from app.models.ticket_type import TicketType
from app.services import catalog
from app.services.errors import Conflict, InvalidInput, NotFound, ValidationError
from app.services.pricing import ZERO, TicketLine, round_money, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SellableUnit:
    unit_id: int
    ticket_type_id: int
    price: Decimal


@dataclass
class ReleaseResult:
    unit_ids: list[int] = field(default_factory=list)
    amount: Decimal = ZERO


@dataclass
class RefundResult:
    refunded: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    refunded_amount: Decimal = ZERO
    # order_id -> amount credited back against its total
    order_credits: dict[int, Decimal] = field(default_factory=dict)


@dataclass
class ValidityResult:
    updated: list[int] = field(default_factory=list)
    already_in_state: list[int] = field(default_factory=list)
    missing: list[int] = field(default_factory=list)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _ids(unit_ids: Iterable[int]) -> list[int]:
    return sorted({int(x) for x in unit_ids})


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _sale_fields(price: Decimal, order_id: int, sold_at: datetime) -> dict:
    return {"sold_price": round_money(price), "sold_at": sold_at, "order_id": order_id}


def _cleared_sale_fields() -> dict:
    return {"sold_price": None, "sold_at": None, "order_id": None}


async def _lock_units(db: AsyncSession, unit_ids: Iterable[int]) -> dict[int, TicketUnit]:
    ids = _ids(unit_ids)
    if not ids:
        return {}

    res = await db.execute(
        select(TicketUnit)
        .where(TicketUnit.id.in_(ids))
        .order_by(TicketUnit.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {int(u.id): u for u in res.scalars().all()}


async def _lock_orders(db: AsyncSession, order_ids: Iterable[int]) -> list[int]:
    ids = sorted(set(order_ids))
    if ids:
        await db.execute(select(Order.id).where(Order.id.in_(ids)).order_by(Order.id).with_for_update())
    return ids


async def _compare_and_set(
    db: AsyncSession,
    unit_ids: Sequence[int],
    *,
    expected: TicketStatus,
    target: TicketStatus,
    values: dict,
    criteria: tuple = (),
) -> int:
    """Move units from ``expected`` to ``target``; returns rows actually changed."""
    if not expected.can_become(target):
        raise Conflict(
            f"Illegal ticket transition {expected.value} -> {target.value}",
            unit_ids=list(unit_ids),
        )
    if not unit_ids:
        return 0

    res = await db.execute(
        update(TicketUnit)
        .where(
            TicketUnit.id.in_(list(unit_ids)),
            TicketUnit.status == expected.value,
            *criteria,
        )
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)


# -------------------------
# Reads
# -------------------------
async def get_unit(db: AsyncSession, unit_id: int) -> TicketUnit:
    unit = await db.get(TicketUnit, unit_id, populate_existing=True)
    if unit is None:
        raise NotFound("Ticket not found")
    return unit


async def list_units(
    db: AsyncSession,
    *,
    status: Optional[TicketStatus] = None,
    ticket_type_id: Optional[int] = None,
    order_id: Optional[int] = None,
    limit: int = 1000,
    offset: int = 0,
) -> list[TicketUnit]:
    stmt = select(TicketUnit).order_by(TicketUnit.id.asc()).limit(limit).offset(offset)
    if status is not None:
        stmt = stmt.where(TicketUnit.status == TicketStatus(status).value)
    if ticket_type_id is not None:
        stmt = stmt.where(TicketUnit.ticket_type_id == ticket_type_id)
    if order_id is not None:
        stmt = stmt.where(TicketUnit.order_id == order_id)

    res = await db.execute(stmt.execution_options(populate_existing=True))
    return list(res.scalars().all())


async def list_units_for_user(db: AsyncSession, user_id: int) -> list[tuple[TicketUnit, TicketType]]:
    """Units sold on orders placed by ``user_id``, with their ticket type."""
    res = await db.execute(
        select(TicketUnit, TicketType)
        .join(Order, Order.id == TicketUnit.order_id)
        .join(TicketType, TicketType.id == TicketUnit.ticket_type_id)
        .where(Order.user_id == user_id)
        .order_by(TicketUnit.id.asc())
        .execution_options(populate_existing=True)
    )
    units = [(u, t) for u, t in res.all()]
    if not units:
        raise NotFound("No tickets found for this user")
    return units


# -------------------------
# Creation
# -------------------------
async def generate(db: AsyncSession, *, ticket_type_id: int, quantity: int) -> list[TicketUnit]:
    if not _is_positive_int(quantity):
        raise InvalidInput("quantity must be >= 1")

    if await db.get(TicketType, ticket_type_id) is None:
        raise InvalidInput(f"Unknown ticket type {ticket_type_id}")

    units = [
        TicketUnit(ticket_type_id=ticket_type_id, status=TicketStatus.AVAILABLE.value, valid=True)
        for _ in range(quantity)
    ]
    db.add_all(units)
    await db.flush()
    return units


async def generate_batch(db: AsyncSession, lines: Sequence[TicketLine]) -> list[TicketUnit]:
    """Bulk variant: lines without a type or with quantity <= 0 are skipped."""
    valid = [l for l in lines if l.ticket_type_id and _is_positive_int(l.quantity)]
    if not valid:
        raise ValidationError("No valid tickets to generate")

    created: list[TicketUnit] = []
    for line in valid:
        created.extend(await generate(db, ticket_type_id=line.ticket_type_id, quantity=line.quantity))
    return created


async def sell_new(
    db: AsyncSession,
    *,
    ticket_type_id: int,
    quantity: int,
    unit_price,
    order_id: int,
) -> list[TicketUnit]:
    """Create units directly in the sold state, owned by ``order_id``."""
    if not _is_positive_int(quantity):
        raise ValidationError("quantity must be >= 1")

    price = to_decimal(unit_price)
    if price <= 0:
        raise ValidationError("unit price must be positive")

    now = _now_utc()
    units = [
        TicketUnit(
            ticket_type_id=ticket_type_id,
            status=TicketStatus.SOLD.value,
            valid=True,
            **_sale_fields(price, order_id, now),
        )
        for _ in range(quantity)
    ]
    db.add_all(units)
    await db.flush()
    return units


# -------------------------
# Sale of pre-generated units
# -------------------------
async def lock_sellable(db: AsyncSession, unit_ids: Iterable[int]) -> list[SellableUnit]:
    """
    Lock the requested units and check every one is available and valid.

    Raises:
        ValidationError: no ids given, or an id repeated.
        NotFound: an id does not exist.
        Conflict: a unit is not available or not valid (whole batch rejected).
    """
    requested = [int(x) for x in unit_ids]
    ids = _ids(requested)
    if not ids:
        raise ValidationError("No ticket IDs provided")
    if len(ids) != len(requested):
        raise ValidationError("Duplicate ticket IDs provided")

    units = await _lock_units(db, ids)

    missing = [i for i in ids if i not in units]
    if missing:
        raise NotFound(f"Tickets not found: {', '.join(map(str, missing))}")

    blocked = [
        i for i, u in units.items()
        if u.status != TicketStatus.AVAILABLE.value or not u.valid
    ]
    if blocked:
        logger.warning("sale rejected, tickets not available: %s", blocked)
        raise Conflict(f"Tickets not available: {', '.join(map(str, blocked))}", unit_ids=blocked)

    # archived types still price their already generated units
    prices = await catalog.ticket_type_prices(
        db, {u.ticket_type_id for u in units.values()}, include_archived=True
    )

    return [
        SellableUnit(unit_id=i, ticket_type_id=int(units[i].ticket_type_id), price=prices[int(units[i].ticket_type_id)])
        for i in ids
    ]


async def sell_existing(db: AsyncSession, *, unit_ids: Iterable[int], order_id: int) -> list[SellableUnit]:
    """
    available -> sold for every requested unit, all or nothing.

    sold_price is stamped from each unit's current ticket type price.
    """
    sellable = await lock_sellable(db, unit_ids)

    by_price: dict[Decimal, list[int]] = defaultdict(list)
    for s in sellable:
        by_price[s.price].append(s.unit_id)

    now = _now_utc()
    changed = 0
    for price, ids in by_price.items():
        changed += await _compare_and_set(
            db,
            ids,
            expected=TicketStatus.AVAILABLE,
            target=TicketStatus.SOLD,
            values=_sale_fields(price, order_id, now),
            criteria=(TicketUnit.valid.is_(True),),
        )

    if changed != len(sellable):
        # another transaction won the race between our lock and the write
        raise Conflict(
            "Tickets were sold concurrently",
            unit_ids=[s.unit_id for s in sellable],
        )

    return sellable


# -------------------------
# Release / refund
# -------------------------
async def remove(
    db: AsyncSession,
    *,
    order_id: int,
    ticket_type_id: int,
    count: int,
) -> ReleaseResult:
    """
    Release up to ``count`` sold units of a type owned by the order.

    Fewer matching units than requested is not an error.
    """
    if not _is_positive_int(count):
        raise ValidationError("quantity must be >= 1")

    res = await db.execute(
        select(TicketUnit)
        .where(
            TicketUnit.order_id == order_id,
            TicketUnit.ticket_type_id == ticket_type_id,
            TicketUnit.status == TicketStatus.SOLD.value,
        )
        .order_by(TicketUnit.id.asc())
        .limit(count)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    units = list(res.scalars().all())
    if not units:
        return ReleaseResult()

    ids = [int(u.id) for u in units]
    amount = round_money(sum((to_decimal(u.sold_price) for u in units), ZERO))

    changed = await _compare_and_set(
        db,
        ids,
        expected=TicketStatus.SOLD,
        target=TicketStatus.AVAILABLE,
        values=_cleared_sale_fields(),
        criteria=(TicketUnit.order_id == order_id,),
    )
    if changed != len(ids):
        raise Conflict("Tickets changed while being released", unit_ids=ids)

    return ReleaseResult(unit_ids=ids, amount=amount)


async def refund(db: AsyncSession, unit_ids: Iterable[int]) -> RefundResult:
    """
    Best-effort sold -> available. Units in any other state are skipped and
    reported, never an error. Owning orders are credited the stored
    sold_price of each refunded unit.
    """
    ids = _ids(unit_ids)
    if not ids:
        raise ValidationError("Provide an array of ticket IDs")

    # lock order rows before ticket rows, the same order amend uses
    res = await db.execute(
        select(TicketUnit.order_id)
        .where(
            TicketUnit.id.in_(ids),
            TicketUnit.status == TicketStatus.SOLD.value,
            TicketUnit.order_id.is_not(None),
        )
        .distinct()
    )
    locked_orders = set(await _lock_orders(db, {int(r[0]) for r in res.all()}))

    units = await _lock_units(db, ids)
    sold = [u for u in units.values() if u.status == TicketStatus.SOLD.value]

    # a unit may have been resold between the read above and the unit lock
    late = {int(u.order_id) for u in sold if u.order_id is not None} - locked_orders
    if late:
        logger.info("refund locking orders changed under it: %s", sorted(late))
        await _lock_orders(db, late)

    credits: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for u in sold:
        if u.order_id is not None:
            credits[int(u.order_id)] += to_decimal(u.sold_price)

    sold_ids = [int(u.id) for u in sold]
    changed = await _compare_and_set(
        db,
        sold_ids,
        expected=TicketStatus.SOLD,
        target=TicketStatus.AVAILABLE,
        values=_cleared_sale_fields(),
    )
    if changed != len(sold_ids):
        raise Conflict("Tickets changed while being refunded", unit_ids=sold_ids)

    for oid, amount in credits.items():
        amount = round_money(amount)
        await db.execute(
            update(Order)
            .where(Order.id == oid)
            .values(
                total_amount=Order.total_amount - amount,
                gross_total=Order.gross_total - amount,
            )
            .execution_options(synchronize_session=False)
        )

    refunded = set(sold_ids)
    return RefundResult(
        refunded=sold_ids,
        skipped=[i for i in ids if i not in refunded],
        refunded_amount=round_money(sum(credits.values(), ZERO)),
        order_credits={k: round_money(v) for k, v in credits.items()},
    )


# -------------------------
# Administrative corrections
# -------------------------
async def set_validity(db: AsyncSession, *, unit_ids: Iterable[int], valid: bool) -> ValidityResult:
    ids = _ids(unit_ids)
    units = await _lock_units(db, ids)
    if not units:
        raise NotFound("No matching tickets found")

    already = [i for i, u in units.items() if bool(u.valid) == valid]
    to_update = [i for i, u in units.items() if bool(u.valid) != valid]

    if to_update:
        await db.execute(
            update(TicketUnit)
            .where(TicketUnit.id.in_(to_update), TicketUnit.valid.is_not(valid))
            .values(valid=valid)
            .execution_options(synchronize_session=False)
        )

    return ValidityResult(
        updated=to_update,
        already_in_state=already,
        missing=[i for i in ids if i not in units],
    )


async def reassign_type(db: AsyncSession, assignments: Mapping[int, int]) -> list[TicketUnit]:
    """Correct the ticket type of units; status and price history untouched."""
    if not assignments:
        raise ValidationError("Provide a list of ticket assignments")

    type_ids = sorted({int(t) for t in assignments.values()})
    res = await db.execute(select(TicketType.id).where(TicketType.id.in_(type_ids)))
    known = {int(r[0]) for r in res.all()}
    unknown_types = [t for t in type_ids if t not in known]
    if unknown_types:
        raise NotFound(f"Ticket types not found: {', '.join(map(str, unknown_types))}")

    units = await _lock_units(db, assignments.keys())
    missing = [i for i in _ids(assignments.keys()) if i not in units]
    if missing:
        raise NotFound(f"Tickets not found: {', '.join(map(str, missing))}")

    for unit_id, type_id in sorted(assignments.items()):
        await db.execute(
            update(TicketUnit)
            .where(TicketUnit.id == int(unit_id))
            .values(ticket_type_id=int(type_id))
            .execution_options(synchronize_session=False)
        )

    res = await db.execute(
        select(TicketUnit)
        .where(TicketUnit.id.in_(list(units.keys())))
        .order_by(TicketUnit.id)
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())
