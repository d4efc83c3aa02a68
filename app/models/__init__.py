# app/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from app.models.user import User  # noqa: F401

# Catalog
from app.models.ticket_type import TicketType  # noqa: F401
from app.models.meal import Meal  # noqa: F401

# Inventory + orders
from app.models.ticket import TicketUnit  # noqa: F401
from app.models.order import Order  # noqa: F401
from app.models.order_meal import OrderMeal  # noqa: F401
from app.models.payment import Payment  # noqa: F401
