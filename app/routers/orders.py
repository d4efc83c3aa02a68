from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from starlette.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import require_manager, require_staff
from app.models.user import User
from app.routers.tickets import to_payment_lines
from app.schemas.orders import AmendOrderIn, AmendOrderOut, OrderOut
from app.services import orders
from app.services.orders import AmendMealLine
from app.services.pricing import MealLine, TicketLine
from app.services.reports_pdf import generate_day_report_pdf

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.get("/day-report", response_model=list[OrderOut])
async def orders_day_report(
    day: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    return await orders.list_orders_on(db, day=day)


@router.get("/range-report", response_model=list[OrderOut])
async def orders_range_report(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_date, time.min, tzinfo=timezone.utc) + timedelta(days=1)
    return await orders.list_orders_between(db, start=start, end=end)


@router.get("/day-report.pdf")
async def orders_day_report_pdf(
    day: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
):
    pdf_bytes = await generate_day_report_pdf(db, day=day)
    filename = f"sales_{day.isoformat()}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_staff),
):
    return await orders.get_order(db, order_id)


@router.put("/{order_id}", response_model=AmendOrderOut)
async def amend_order(
    order_id: int,
    body: AmendOrderIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(require_manager),
) -> AmendOrderOut:
    result = await orders.amend(
        db,
        order_id=order_id,
        added_tickets=[TicketLine(t.ticket_type_id, t.quantity) for t in body.addedTickets],
        removed_tickets=[TicketLine(t.ticket_type_id, t.quantity) for t in body.removedTickets],
        added_meals=[AmendMealLine(m.meal_id, m.quantity, m.price) for m in body.addedMeals],
        removed_meals=[MealLine(m.meal_id, m.quantity) for m in body.removedMeals],
        new_payments=to_payment_lines(body.payments),
        skip_payment_validation=not body.validatePayments,
    )
    return AmendOrderOut(
        order_id=result.order.id,
        previousTotal=result.previous_total,
        totalAmount=result.total_amount,
        addedTicketIds=result.added_ticket_ids,
        releasedTicketIds=result.released_ticket_ids,
        paymentsReplaced=result.payments_replaced,
    )
