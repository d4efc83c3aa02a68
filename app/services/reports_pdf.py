from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from io import BytesIO
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payment import PaymentMethod
from app.services.orders import list_orders_on
from app.services.pricing import ZERO, round_money, to_decimal
from app.services.reports import ticket_revenue_on


def _fmt_dt(dt: Optional[datetime]) -> str:
    if not dt:
        return ""
    return dt.strftime("%H:%M")


def _money(value) -> str:
    return f"{round_money(value if value is not None else ZERO):,.2f}"


def _table(header: list[str], rows: list[list[str]]) -> Table:
    tbl = Table([header] + rows, repeatRows=1)
    tbl.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#0f4c5c")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, 0), 9),
                ("FONTSIZE", (0, 1), (-1, -1), 8),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.whitesmoke, colors.lightgrey]),
                ("LEFTPADDING", (0, 0), (-1, -1), 4),
                ("RIGHTPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    return tbl


def _build_pdf(*, title: str, subtitle_lines: list[str], sections: list[tuple[str, Table]]) -> bytes:
    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=12 * mm,
        rightMargin=12 * mm,
        topMargin=12 * mm,
        bottomMargin=12 * mm,
        title=title,
    )

    styles = getSampleStyleSheet()
    story = [Paragraph(f"<b>{title}</b>", styles["Title"]), Spacer(1, 6)]

    for line in subtitle_lines:
        story.append(Paragraph(line, styles["Normal"]))
    story.append(Spacer(1, 10))

    for heading, tbl in sections:
        story.append(Paragraph(f"<b>{heading}</b>", styles["Heading3"]))
        story.append(tbl)
        story.append(Spacer(1, 10))

    doc.build(story)
    return buf.getvalue()


async def generate_day_report_pdf(db: AsyncSession, *, day: date) -> bytes:
    orders = await list_orders_on(db, day=day, limit=10000)
    revenue = await ticket_revenue_on(db, day=day)

    by_method: dict[str, Decimal] = defaultdict(lambda: ZERO)
    net_total = ZERO
    for o in orders:
        net_total += to_decimal(o["total_amount"])
        for p in o["payments"]:
            by_method[p["method"]] += to_decimal(p["amount"])

    subtitle = [
        f"Day: <b>{day.isoformat()}</b>",
        f"Generated at: {datetime.now(timezone.utc).isoformat(timespec='seconds')}",
        f"Orders: {len(orders)} | Net revenue: {_money(net_total)}",
    ]

    order_rows = [
        [
            str(o["order_id"]),
            _fmt_dt(o["created_at"]),
            o["user_name"],
            str(len(o["tickets"])),
            str(sum(m["quantity"] for m in o["meals"])),
            _money(o["gross_total"]),
            _money(o["discount"]),
            _money(o["total_amount"]),
        ]
        for o in orders
    ]

    method_rows = [
        [m.value, _money(by_method[m.value])]
        for m in PaymentMethod
        if m.value in by_method
    ]

    revenue_rows = [
        [r["category"], r["subcategory"], str(r["total_tickets"]), _money(r["total_revenue"])]
        for r in revenue
    ]

    return _build_pdf(
        title="Daily Sales Report",
        subtitle_lines=subtitle,
        sections=[
            (
                "Orders",
                _table(["Order#", "Time", "Cashier", "Tickets", "Meals", "Gross", "Discount", "Net"], order_rows),
            ),
            ("Payments by method", _table(["Method", "Amount"], method_rows)),
            ("Ticket revenue", _table(["Category", "Subcategory", "Count", "Revenue"], revenue_rows)),
        ],
    )
