"""
Basket pricing and payment reconciliation.

Pure functions over price maps; callers load prices from the catalog.
All money is Decimal, rounded half-up to cents after every aggregation step.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Mapping, Sequence

from app.models.payment import PaymentMethod
from app.services.errors import AmountMismatch, InvalidPaymentCombination, ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"Invalid amount: {value!r}")
    try:
        # str() keeps 0.1 as 0.1 instead of its binary expansion
        return Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")


def round_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class TicketLine:
    ticket_type_id: int
    quantity: int


@dataclass(frozen=True)
class MealLine:
    meal_id: int
    quantity: int


@dataclass(frozen=True)
class PaymentLine:
    method: str
    amount: Decimal


@dataclass(frozen=True)
class PricedTicketLine:
    ticket_type_id: int
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class PricedMealLine:
    meal_id: int
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class PricedBasket:
    tickets: list[PricedTicketLine] = field(default_factory=list)
    meals: list[PricedMealLine] = field(default_factory=list)
    ticket_total: Decimal = ZERO
    meal_total: Decimal = ZERO
    gross_total: Decimal = ZERO

    @property
    def is_empty(self) -> bool:
        return not self.tickets and not self.meals

    @property
    def ticket_count(self) -> int:
        return sum(t.quantity for t in self.tickets)


@dataclass(frozen=True)
class Settlement:
    gross_total: Decimal
    discount: Decimal
    final_total: Decimal
    tendered: Decimal
    postponed: bool = False


def _valid_quantity(quantity) -> bool:
    return isinstance(quantity, int) and not isinstance(quantity, bool) and quantity > 0


def price_basket(
    ticket_lines: Iterable[TicketLine],
    meal_lines: Iterable[MealLine],
    ticket_prices: Mapping[int, Decimal],
    meal_prices: Mapping[int, Decimal],
) -> PricedBasket:
    """
    Price a basket against the given catalog prices.

    Lines whose id is missing from the price map (unknown or archived) or
    whose quantity is not positive are dropped, not rejected.

    Rounding is two-stage: ticket subtotal and meal subtotal are each
    rounded, then their sum is rounded again.
    """
    tickets = [
        PricedTicketLine(
            ticket_type_id=line.ticket_type_id,
            quantity=line.quantity,
            unit_price=to_decimal(ticket_prices[line.ticket_type_id]),
        )
        for line in ticket_lines
        if line.ticket_type_id in ticket_prices and _valid_quantity(line.quantity)
    ]

    meals = [
        PricedMealLine(
            meal_id=line.meal_id,
            quantity=line.quantity,
            unit_price=to_decimal(meal_prices[line.meal_id]),
        )
        for line in meal_lines
        if line.meal_id in meal_prices and _valid_quantity(line.quantity)
    ]

    ticket_total = round_money(sum((t.unit_price * t.quantity for t in tickets), ZERO))
    meal_total = round_money(sum((m.unit_price * m.quantity for m in meals), ZERO))

    return PricedBasket(
        tickets=tickets,
        meals=meals,
        ticket_total=ticket_total,
        meal_total=meal_total,
        gross_total=round_money(ticket_total + meal_total),
    )


def discount_of(payments: Sequence[PaymentLine]) -> Decimal:
    return round_money(
        sum((to_decimal(p.amount) for p in payments if p.method == PaymentMethod.DISCOUNT), ZERO)
    )


def apply_payments(gross_total, payments: Sequence[PaymentLine]) -> Settlement:
    """
    Split payments into discount and tendered money and check they settle
    the basket exactly.

    Raises:
        InvalidPaymentCombination: ``postponed`` is mixed with other lines.
        ValidationError: a payment amount is negative or not a number.
        AmountMismatch: tendered sum differs from gross minus discount.
    """
    methods = [p.method for p in payments]
    postponed = PaymentMethod.POSTPONED in methods
    if postponed and len(payments) > 1:
        raise InvalidPaymentCombination("Postponed payment cannot be combined with other payment methods")

    for p in payments:
        if to_decimal(p.amount) < 0:
            raise ValidationError(f"Payment amount must not be negative ({p.method})")

    gross = round_money(gross_total)
    discount = discount_of(payments)
    tendered = round_money(
        sum((to_decimal(p.amount) for p in payments if p.method != PaymentMethod.DISCOUNT), ZERO)
    )
    final_total = round_money(gross - discount)

    if tendered != final_total:
        raise AmountMismatch(f"Paid amount ({tendered}) must match final total ({final_total})")

    return Settlement(
        gross_total=gross,
        discount=discount,
        final_total=final_total,
        tendered=tendered,
        postponed=postponed,
    )
