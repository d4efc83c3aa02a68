from decimal import Decimal

import pytest

from app.services import catalog
from app.services.errors import NotFound, ValidationError


async def test_add_ticket_types_skips_existing_pairs(db, adult_ticket):
    created = await catalog.add_ticket_types(
        db,
        [
            {"category": "Adult", "subcategory": "Standard", "price": "45.00"},
            {"category": "Adult", "subcategory": "VIP", "price": "90.00", "description": "front rows"},
        ],
    )
    assert [(t.category, t.subcategory) for t in created] == [("Adult", "VIP")]

    types = await catalog.list_ticket_types(db)
    assert len(types) == 2
    assert await catalog.get_ticket_type_price(db, adult_ticket.id) == Decimal("50.00")


async def test_add_ticket_types_rejects_bad_price(db):
    with pytest.raises(ValidationError):
        await catalog.add_ticket_types(db, [{"category": "Adult", "subcategory": "Free", "price": 0}])


async def test_update_prices_ignores_invalid_rows(db, adult_ticket):
    updated = await catalog.update_ticket_prices(db, [(adult_ticket.id, "65.50"), (adult_ticket.id, "-1")])
    assert [t.price for t in updated] == [Decimal("65.50")]

    with pytest.raises(ValidationError):
        await catalog.update_ticket_prices(db, [(adult_ticket.id, 0)])


async def test_archive_category(db, adult_ticket, child_ticket):
    rows = await catalog.set_category_archived(db, category="Adult", archived=True)
    assert [r.archived for r in rows] == [True]

    assert await catalog.ticket_type_prices(db, [adult_ticket.id, child_ticket.id]) == {
        child_ticket.id: Decimal("30.00")
    }
    assert adult_ticket.id in await catalog.ticket_type_prices(db, [adult_ticket.id], include_archived=True)
    assert [t.id for t in await catalog.list_ticket_types(db, archived=False)] == [child_ticket.id]

    with pytest.raises(NotFound):
        await catalog.set_category_archived(db, category="Senior", archived=True)


async def test_meals(db, burger):
    created = await catalog.add_meals(db, [{"name": "Fries", "price": "4.50", "age_group": "all"}])
    assert created[0].description == ""

    updated = await catalog.update_meals(
        db, [{"id": burger.id, "name": "Cheeseburger", "price": "13.00", "age_group": "adult"}]
    )
    assert updated[0].name == "Cheeseburger"
    assert await catalog.get_meal_price(db, burger.id) == Decimal("13.00")

    with pytest.raises(ValidationError):
        await catalog.add_meals(db, [{"name": "Soup", "price": "4.00", "age_group": "senior"}])

    with pytest.raises(NotFound):
        await catalog.get_meal_price(db, 9999)
