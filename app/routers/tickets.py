from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import require_manager, require_staff
from app.models.ticket import TicketStatus
from app.models.user import User
from app.schemas.orders import MealLineIn, PaymentIn
from app.schemas.tickets import (
    AddTicketTypesIn,
    ArchiveCategoryIn,
    AssignTypesIn,
    CheckoutExistingIn,
    CheckoutOut,
    GenerateTicketsIn,
    GenerateTicketsOut,
    RefundIn,
    RefundOut,
    SellTicketsIn,
    TicketRevenueRow,
    TicketTypeOut,
    TicketUnitOut,
    UpdatePricesIn,
    ValidateTicketsIn,
    ValidateTicketsOut,
    UserTicketOut,
)
from app.services import catalog, inventory, orders, reports, tickets
from app.services.pricing import MealLine, PaymentLine, TicketLine

router = APIRouter(prefix="/tickets", tags=["Tickets"])


def to_meal_lines(meals: list[MealLineIn]) -> list[MealLine]:
    return [MealLine(meal_id=m.meal_id, quantity=m.quantity) for m in meals]


def to_payment_lines(payments: Optional[list[PaymentIn]]) -> Optional[list[PaymentLine]]:
    if payments is None:
        return None
    return [PaymentLine(method=p.method, amount=p.amount) for p in payments]


@router.get("", response_model=list[TicketUnitOut])
async def list_tickets(
    status: Optional[TicketStatus] = Query(default=None),
    ticket_type_id: Optional[int] = Query(default=None),
    limit: int = Query(default=1000, ge=1, le=10000),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_staff),
):
    return await inventory.list_units(
        db, status=status, ticket_type_id=ticket_type_id, limit=limit, offset=offset
    )


@router.get("/ticket-types", response_model=list[TicketTypeOut])
async def list_ticket_types(
    archived: Optional[bool] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_staff),
):
    return await catalog.list_ticket_types(db, archived=archived)


@router.get("/ticket/{ticket_id}", response_model=TicketUnitOut)
async def get_ticket(
    ticket_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_staff),
):
    return await inventory.get_unit(db, ticket_id)


@router.get("/user/{user_id}", response_model=list[UserTicketOut])
async def tickets_by_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_staff),
):
    rows = await inventory.list_units_for_user(db, user_id)
    return [
        UserTicketOut(
            id=u.id,
            status=u.status,
            valid=u.valid,
            sold_at=u.sold_at,
            sold_price=u.sold_price,
            created_at=u.created_at,
            order_id=u.order_id,
            ticket_type_id=t.id,
            category=t.category,
            subcategory=t.subcategory,
            description=t.description,
        )
        for u, t in rows
    ]


@router.get("/day-report", response_model=list[TicketRevenueRow])
async def day_report(
    day: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    return await reports.ticket_revenue_on(db, day=day)


@router.get("/between-dates-report", response_model=list[TicketRevenueRow])
async def between_dates_report(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    return await reports.ticket_revenue_between(db, start_day=start_date, end_day=end_date)


@router.post("/sell", response_model=CheckoutOut)
async def sell_tickets(
    body: SellTicketsIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_staff),
) -> CheckoutOut:
    result = await orders.checkout_new(
        db,
        tickets=[TicketLine(ticket_type_id=t.ticket_type_id, quantity=t.quantity) for t in body.tickets],
        meals=to_meal_lines(body.meals),
        buyer_id=body.user_id if body.user_id is not None else current_user.id,
        description=body.description,
        payments=to_payment_lines(body.payments),
    )
    return CheckoutOut(
        message="Checkout completed with discount support",
        order_id=result.order.id,
        grossTotal=result.gross_total,
        discountAmount=result.discount,
        finalTotal=result.final_total,
        ticket_ids=result.ticket_ids,
    )


@router.put("/checkout-existing", response_model=CheckoutOut)
async def checkout_existing(
    body: CheckoutExistingIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_staff),
) -> CheckoutOut:
    result = await orders.checkout_existing(
        db,
        unit_ids=body.ticket_ids,
        buyer_id=body.user_id if body.user_id is not None else current_user.id,
        description=body.description,
        payments=to_payment_lines(body.payments),
        meals=to_meal_lines(body.meals),
    )
    return CheckoutOut(
        message="Tickets sold successfully",
        order_id=result.order.id,
        grossTotal=result.gross_total,
        discountAmount=result.discount,
        finalTotal=result.final_total,
        ticket_ids=result.ticket_ids,
    )


@router.post("/add-type", response_model=list[TicketTypeOut], status_code=201)
async def add_ticket_types(
    body: AddTicketTypesIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    return await catalog.add_ticket_types(db, [t.model_dump() for t in body.ticketTypes])


@router.post("/generate", response_model=GenerateTicketsOut)
async def generate_tickets(
    body: GenerateTicketsIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
) -> GenerateTicketsOut:
    units = await tickets.generate_tickets(
        db, [TicketLine(ticket_type_id=t.ticket_type_id, quantity=t.quantity) for t in body.tickets]
    )
    return GenerateTicketsOut(generatedTicketIds=[int(u.id) for u in units])


@router.patch("/update-price", response_model=list[TicketTypeOut])
async def update_prices(
    body: UpdatePricesIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    return await catalog.update_ticket_prices(db, [(t.id, t.price) for t in body.tickets])


@router.put("/validate", response_model=ValidateTicketsOut)
async def validate_tickets(
    body: ValidateTicketsIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
) -> ValidateTicketsOut:
    if not body.tickets:
        raise HTTPException(status_code=400, detail="No tickets provided")

    result = await tickets.set_ticket_validity(db, body.tickets, body.valid)
    if result.updated:
        message = f"Successfully updated {len(result.updated)} tickets"
    else:
        message = "No tickets were updated as they were already in the requested state"

    return ValidateTicketsOut(
        message=message,
        updatedTickets=result.updated,
        alreadyInState=result.already_in_state,
        missing=result.missing,
    )


@router.put("/refund", response_model=RefundOut)
async def refund_tickets(
    body: RefundIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
) -> RefundOut:
    result = await tickets.refund_tickets(db, body.ticketIds)
    if not result.refunded:
        raise HTTPException(
            status_code=404,
            detail="No valid tickets were refunded. Ensure tickets are sold.",
        )
    return RefundOut(
        refundedTickets=result.refunded,
        skippedTickets=result.skipped,
        refundedAmount=result.refunded_amount,
    )


@router.patch("/archive-category", response_model=list[TicketTypeOut])
async def archive_category(
    body: ArchiveCategoryIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    return await catalog.set_category_archived(db, category=body.category, archived=body.archived)


@router.patch("/assign-types", response_model=list[TicketUnitOut])
async def assign_types(
    body: AssignTypesIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    return await tickets.assign_ticket_types(
        db, {a.id: a.ticket_type_id for a in body.assignments}
    )
