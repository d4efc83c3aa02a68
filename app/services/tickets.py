from __future__ import annotations

import logging
from typing import Iterable, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ticket import TicketUnit
from app.services import inventory
from app.services.inventory import RefundResult, ValidityResult
from app.services.pricing import TicketLine

logger = logging.getLogger(__name__)


async def generate_tickets(db: AsyncSession, lines: Sequence[TicketLine]) -> list[TicketUnit]:
    try:
        units = await inventory.generate_batch(db, lines)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("generated %d ticket units", len(units))
    return units


async def refund_tickets(db: AsyncSession, unit_ids: Iterable[int]) -> RefundResult:
    try:
        result = await inventory.refund(db, unit_ids)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "refund: refunded=%s skipped=%s amount=%s orders=%s",
        result.refunded, result.skipped, result.refunded_amount, sorted(result.order_credits),
    )
    return result


async def set_ticket_validity(db: AsyncSession, unit_ids: Iterable[int], valid: bool) -> ValidityResult:
    try:
        result = await inventory.set_validity(db, unit_ids=unit_ids, valid=valid)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("validity=%s updated=%s unchanged=%s", valid, result.updated, result.already_in_state)
    return result


async def assign_ticket_types(db: AsyncSession, assignments: Mapping[int, int]) -> list[TicketUnit]:
    try:
        units = await inventory.reassign_type(db, assignments)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("reassigned ticket types: %s", dict(assignments))
    return units
