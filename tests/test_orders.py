from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.models.order import Order
from app.models.order_meal import OrderMeal
from app.models.payment import Payment
from app.models.ticket import TicketUnit
from app.services import catalog, inventory, orders, tickets
from app.services import payments as payment_records
from app.services.errors import AmountMismatch, InvalidInput, InvalidPaymentCombination, NotFound, ValidationError
from app.services.orders import AmendMealLine
from app.services.pricing import MealLine, PaymentLine, TicketLine

D = Decimal


async def _count(db, model):
    res = await db.execute(select(func.count()).select_from(model))
    return int(res.scalar_one())


async def _meal_line(db, order_id, meal_id):
    res = await db.execute(
        select(OrderMeal)
        .where(OrderMeal.order_id == order_id, OrderMeal.meal_id == meal_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def _reload(db, order_id):
    return await db.get(Order, order_id, populate_existing=True)


async def _sell(db, cashier, adult_ticket, burger=None, *, tickets_qty=2, meals_qty=0, cash=None):
    meals = [MealLine(burger.id, meals_qty)] if burger is not None and meals_qty else []
    gross = D("50.00") * tickets_qty + (D("12.50") * meals_qty if meals else 0)
    return await orders.checkout_new(
        db,
        tickets=[TicketLine(adult_ticket.id, tickets_qty)],
        meals=meals,
        buyer_id=cashier.id,
        payments=[PaymentLine("cash", cash if cash is not None else gross)],
    )


# -------------------------
# checkout_new
# -------------------------
async def test_checkout_two_tickets_for_cash(db, cashier, adult_ticket):
    result = await orders.checkout_new(
        db,
        tickets=[TicketLine(adult_ticket.id, 2)],
        buyer_id=cashier.id,
        payments=[PaymentLine("cash", D("100.00"))],
    )

    order = await _reload(db, result.order.id)
    assert order.total_amount == D("100.00")
    units = await inventory.list_units(db, order_id=order.id)
    assert [(u.status, u.sold_price) for u in units] == [("sold", D("50.00")), ("sold", D("50.00"))]


async def test_checkout_cash_plus_discount(db, cashier, adult_ticket):
    result = await orders.checkout_new(
        db,
        tickets=[TicketLine(adult_ticket.id, 2)],
        buyer_id=cashier.id,
        payments=[PaymentLine("cash", D("80.00")), PaymentLine("discount", D("20.00"))],
    )
    assert (result.gross_total, result.discount, result.final_total) == (D("100.00"), D("20.00"), D("80.00"))


async def test_checkout_postponed_with_zero_cash(db, cashier, adult_ticket):
    with pytest.raises(InvalidPaymentCombination):
        await orders.checkout_new(
            db,
            tickets=[TicketLine(adult_ticket.id, 2)],
            buyer_id=cashier.id,
            payments=[PaymentLine("postponed", D("100.00")), PaymentLine("cash", D("0"))],
        )
    assert await _count(db, Order) == 0


async def test_checkout_with_discount_and_split_payment(db, cashier, adult_ticket, burger):
    result = await orders.checkout_new(
        db,
        tickets=[TicketLine(adult_ticket.id, 2)],
        meals=[MealLine(burger.id, 2)],
        buyer_id=cashier.id,
        description="family visit",
        payments=[
            PaymentLine("discount", D("25.00")),
            PaymentLine("cash", D("60.00")),
            PaymentLine("card", D("40.00")),
        ],
    )

    assert result.gross_total == D("125.00")
    assert result.discount == D("25.00")
    assert result.final_total == D("100.00")
    assert len(result.ticket_ids) == 2

    order = await _reload(db, result.order.id)
    assert order.total_amount == D("100.00")
    assert order.gross_total == D("125.00")
    assert order.description == "family visit"

    units = await inventory.list_units(db, order_id=order.id)
    assert [u.status for u in units] == ["sold", "sold"]
    assert all(u.sold_price == D("50.00") for u in units)

    line = await _meal_line(db, order.id, burger.id)
    assert line.quantity == 2
    assert line.price_at_order == D("12.50")

    assert await _count(db, Payment) == 3


async def test_checkout_merges_repeated_meal_lines(db, cashier, adult_ticket, juice):
    result = await orders.checkout_new(
        db,
        meals=[MealLine(juice.id, 1), MealLine(juice.id, 2)],
        buyer_id=cashier.id,
        payments=[PaymentLine("cash", D("9.00"))],
    )
    line = await _meal_line(db, result.order.id, juice.id)
    assert line.quantity == 3
    assert result.ticket_ids == []


async def test_checkout_amount_mismatch_persists_nothing(db, cashier, adult_ticket):
    with pytest.raises(AmountMismatch):
        await orders.checkout_new(
            db,
            tickets=[TicketLine(adult_ticket.id, 2)],
            buyer_id=cashier.id,
            payments=[PaymentLine("cash", D("90.00"))],
        )
    assert await _count(db, Order) == 0
    assert await _count(db, TicketUnit) == 0


async def test_checkout_unknown_payment_method_rolls_back(db, cashier, adult_ticket):
    with pytest.raises(InvalidInput):
        await orders.checkout_new(
            db,
            tickets=[TicketLine(adult_ticket.id, 1)],
            buyer_id=cashier.id,
            payments=[PaymentLine("crypto", D("50.00"))],
        )
    assert await _count(db, Order) == 0
    assert await _count(db, TicketUnit) == 0
    assert await _count(db, Payment) == 0


async def test_checkout_requires_payments(db, cashier, adult_ticket):
    with pytest.raises(ValidationError):
        await orders.checkout_new(
            db, tickets=[TicketLine(adult_ticket.id, 1)], buyer_id=cashier.id, payments=[]
        )


async def test_checkout_requires_buyer(db, adult_ticket):
    with pytest.raises(ValidationError):
        await orders.checkout_new(
            db,
            tickets=[TicketLine(adult_ticket.id, 1)],
            buyer_id=None,
            payments=[PaymentLine("cash", D("50"))],
        )
    with pytest.raises(NotFound):
        await orders.checkout_new(
            db,
            tickets=[TicketLine(adult_ticket.id, 1)],
            buyer_id=404,
            payments=[PaymentLine("cash", D("50"))],
        )


async def test_archived_type_is_dropped_from_basket(db, cashier, adult_ticket):
    await catalog.set_category_archived(db, category="Adult", archived=True)

    with pytest.raises(ValidationError):
        await orders.checkout_new(
            db,
            tickets=[TicketLine(adult_ticket.id, 1)],
            buyer_id=cashier.id,
            payments=[PaymentLine("cash", D("50.00"))],
        )
    assert await _count(db, Order) == 0


async def test_postponed_checkout(db, cashier, adult_ticket):
    result = await orders.checkout_new(
        db,
        tickets=[TicketLine(adult_ticket.id, 1)],
        buyer_id=cashier.id,
        payments=[PaymentLine("postponed", D("50.00"))],
    )
    details = await orders.get_order(db, result.order.id)
    assert details["payments"] == [{"method": "postponed", "amount": D("50.00")}]


# -------------------------
# checkout_existing
# -------------------------
async def test_checkout_existing_uses_live_type_price(db, cashier, adult_ticket, juice):
    units = await tickets.generate_tickets(db, [TicketLine(adult_ticket.id, 2)])
    ids = [int(u.id) for u in units]
    await catalog.update_ticket_prices(db, [(adult_ticket.id, "55.00")])

    result = await orders.checkout_existing(
        db,
        unit_ids=ids,
        buyer_id=cashier.id,
        meals=[MealLine(juice.id, 1)],
        payments=[PaymentLine("card", D("113.00"))],
    )

    assert result.gross_total == D("113.00")
    assert result.ticket_ids == ids
    sold = await inventory.list_units(db, order_id=result.order.id)
    assert [u.sold_price for u in sold] == [D("55.00"), D("55.00")]


async def test_checkout_existing_mismatch_keeps_units_available(db, cashier, adult_ticket):
    units = await tickets.generate_tickets(db, [TicketLine(adult_ticket.id, 1)])
    unit_id = int(units[0].id)

    with pytest.raises(AmountMismatch):
        await orders.checkout_existing(
            db,
            unit_ids=[unit_id],
            buyer_id=cashier.id,
            payments=[PaymentLine("cash", D("10.00"))],
        )
    # the rollback expired every instance loaded by this session
    unit = await inventory.get_unit(db, unit_id)
    assert unit.status == "available"
    assert await _count(db, Order) == 0


async def test_checkout_existing_needs_ids(db, cashier):
    with pytest.raises(ValidationError):
        await orders.checkout_existing(
            db, unit_ids=[], buyer_id=cashier.id, payments=[PaymentLine("cash", D("1"))]
        )


async def test_checkout_existing_rejects_repeated_ids(db, cashier, adult_ticket):
    units = await tickets.generate_tickets(db, [TicketLine(adult_ticket.id, 1)])
    unit_id = int(units[0].id)

    # one unit listed twice must not be charged as a single ticket
    with pytest.raises(ValidationError, match="Duplicate"):
        await orders.checkout_existing(
            db,
            unit_ids=[unit_id, unit_id],
            buyer_id=cashier.id,
            payments=[PaymentLine("cash", D("50.00"))],
        )

    unit = await inventory.get_unit(db, unit_id)
    assert unit.status == "available"
    assert await _count(db, Order) == 0


# -------------------------
# amend
# -------------------------
async def test_amend_add_and_remove_tickets(db, cashier, adult_ticket):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=2)

    result = await orders.amend(
        db,
        order_id=sale.order.id,
        added_tickets=[TicketLine(adult_ticket.id, 1)],
        removed_tickets=[TicketLine(adult_ticket.id, 2)],
    )

    assert result.previous_total == D("100.00")
    assert result.total_amount == D("50.00")
    assert len(result.added_ticket_ids) == 1
    # the oldest sold units go first
    assert result.released_ticket_ids == sale.ticket_ids

    order = await _reload(db, sale.order.id)
    assert order.total_amount == D("50.00")
    assert order.gross_total == D("50.00")

    held = await inventory.list_units(db, order_id=order.id)
    assert [int(u.id) for u in held] == result.added_ticket_ids


async def test_amend_add_then_remove_restores_total(db, cashier, adult_ticket):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=2)

    added = await orders.amend(db, order_id=sale.order.id, added_tickets=[TicketLine(adult_ticket.id, 1)])
    assert added.total_amount == D("150.00")

    removed = await orders.amend(db, order_id=sale.order.id, removed_tickets=[TicketLine(adult_ticket.id, 1)])
    assert removed.total_amount == D("100.00")
    assert len(removed.released_ticket_ids) == 1

    released = await inventory.get_unit(db, removed.released_ticket_ids[0])
    assert released.status == "available"
    assert len(await inventory.list_units(db, order_id=sale.order.id)) == 2


async def test_amend_reprices_added_tickets(db, cashier, adult_ticket):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=1)
    await catalog.update_ticket_prices(db, [(adult_ticket.id, D("60.00"))])

    result = await orders.amend(db, order_id=sale.order.id, added_tickets=[TicketLine(adult_ticket.id, 1)])

    assert result.total_amount == D("110.00")
    added = await inventory.get_unit(db, result.added_ticket_ids[0])
    assert added.sold_price == D("60.00")


async def test_amend_removing_more_tickets_than_held(db, cashier, adult_ticket):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=1)
    result = await orders.amend(db, order_id=sale.order.id, removed_tickets=[TicketLine(adult_ticket.id, 3)])
    assert result.released_ticket_ids == sale.ticket_ids
    assert result.total_amount == D("0.00")


async def test_amend_added_meal_uses_request_price(db, cashier, adult_ticket, burger):
    sale = await _sell(db, cashier, adult_ticket, burger, tickets_qty=1, meals_qty=1)

    result = await orders.amend(
        db,
        order_id=sale.order.id,
        added_meals=[AmendMealLine(burger.id, 2, D("10.00"))],
    )

    assert result.total_amount == D("82.50")
    line = await _meal_line(db, sale.order.id, burger.id)
    assert line.quantity == 3
    # existing line keeps the price it was sold at
    assert line.price_at_order == D("12.50")


async def test_amend_new_meal_line(db, cashier, adult_ticket, juice):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=1)
    await orders.amend(db, order_id=sale.order.id, added_meals=[AmendMealLine(juice.id, 1, D("2.75"))])

    line = await _meal_line(db, sale.order.id, juice.id)
    assert line.quantity == 1
    assert line.price_at_order == D("2.75")


async def test_amend_meal_removal_is_not_clamped(db, cashier, adult_ticket, burger):
    sale = await _sell(db, cashier, adult_ticket, burger, tickets_qty=1, meals_qty=2)

    result = await orders.amend(db, order_id=sale.order.id, removed_meals=[MealLine(burger.id, 3)])

    assert result.previous_total == D("75.00")
    assert result.total_amount == D("37.50")
    assert await _meal_line(db, sale.order.id, burger.id) is None


async def test_amend_removing_absent_meal_is_skipped(db, cashier, adult_ticket, juice):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=1)
    result = await orders.amend(db, order_id=sale.order.id, removed_meals=[MealLine(juice.id, 1)])
    assert result.total_amount == D("50.00")


async def test_amend_unknown_meal(db, cashier, adult_ticket):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=1)
    with pytest.raises(NotFound):
        await orders.amend(db, order_id=sale.order.id, added_meals=[AmendMealLine(999, 1, D("5"))])


async def test_amend_missing_order(db):
    with pytest.raises(NotFound):
        await orders.amend(db, order_id=12345)


async def test_amend_replaces_payments_verbatim(db, cashier, adult_ticket):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=2)

    result = await orders.amend(
        db,
        order_id=sale.order.id,
        new_payments=[PaymentLine("card", D("1.00"))],
    )

    assert result.payments_replaced
    details = await orders.get_order(db, sale.order.id)
    assert details["payments"] == [{"method": "card", "amount": D("1.00")}]
    assert details["total_amount"] == D("100.00")


async def test_amend_validated_payments_must_settle(db, cashier, adult_ticket):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=2)
    order_id = int(sale.order.id)

    with pytest.raises(AmountMismatch):
        await orders.amend(
            db,
            order_id=order_id,
            added_tickets=[TicketLine(adult_ticket.id, 1)],
            new_payments=[PaymentLine("cash", D("100.00"))],
            skip_payment_validation=False,
        )

    order = await _reload(db, order_id)
    assert order.total_amount == D("100.00")
    assert len(await inventory.list_units(db, order_id=order.id)) == 2


async def test_amend_validated_payments_with_discount(db, cashier, adult_ticket):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=2)

    result = await orders.amend(
        db,
        order_id=sale.order.id,
        added_tickets=[TicketLine(adult_ticket.id, 1)],
        new_payments=[PaymentLine("discount", D("10.00")), PaymentLine("cash", D("150.00"))],
        skip_payment_validation=False,
    )
    assert result.total_amount == D("150.00")


# -------------------------
# reads
# -------------------------
async def test_order_details(db, cashier, adult_ticket, burger):
    sale = await orders.checkout_new(
        db,
        tickets=[TicketLine(adult_ticket.id, 1)],
        meals=[MealLine(burger.id, 1)],
        buyer_id=cashier.id,
        payments=[PaymentLine("discount", D("2.50")), PaymentLine("cash", D("60.00"))],
    )

    details = await orders.get_order(db, sale.order.id)

    assert details["user_name"] == "Cashier One"
    assert details["discount"] == D("2.50")
    assert details["gross_total"] == D("62.50")
    assert [t["category"] for t in details["tickets"]] == ["Adult"]
    assert details["meals"] == [
        {"meal_id": burger.id, "name": "Burger", "quantity": 1, "price_at_order": D("12.50")}
    ]


async def test_payment_records_of_an_order(db, cashier, adult_ticket):
    sale = await orders.checkout_new(
        db,
        tickets=[TicketLine(adult_ticket.id, 1)],
        buyer_id=cashier.id,
        payments=[PaymentLine("voucher", D("20.00")), PaymentLine("discount", D("30.00"))],
    )

    rows = await payment_records.list_for(db, sale.order.id)
    assert [(p.method, p.amount) for p in rows] == [("voucher", D("20.00")), ("discount", D("30.00"))]
    assert payment_records.discount_total(rows) == D("30.00")


async def test_get_missing_order(db):
    with pytest.raises(NotFound):
        await orders.get_order(db, 1)


async def test_orders_listed_for_today(db, cashier, adult_ticket):
    sale = await _sell(db, cashier, adult_ticket, tickets_qty=1)
    today = datetime.now(timezone.utc).date()

    listed = await orders.list_orders_on(db, day=today)
    assert [o["order_id"] for o in listed] == [sale.order.id]
