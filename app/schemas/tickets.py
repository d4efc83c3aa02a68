from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.orders import MealLineIn, PaymentIn


class TicketTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category: str
    subcategory: str
    description: str | None = None
    price: Decimal
    archived: bool
    created_at: datetime | None = None


class TicketTypeIn(BaseModel):
    category: str = Field(..., min_length=1)
    subcategory: str = Field(..., min_length=1)
    price: Decimal
    description: str | None = None


class AddTicketTypesIn(BaseModel):
    ticketTypes: List[TicketTypeIn] = Field(default_factory=list)


class PriceUpdateIn(BaseModel):
    id: int
    price: Decimal


class UpdatePricesIn(BaseModel):
    tickets: List[PriceUpdateIn] = Field(default_factory=list)


class ArchiveCategoryIn(BaseModel):
    category: str = Field(..., min_length=1)
    archived: bool


class TicketUnitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_type_id: int
    status: str
    valid: bool
    sold_price: Decimal | None = None
    sold_at: datetime | None = None
    order_id: int | None = None
    created_at: datetime | None = None


class UserTicketOut(BaseModel):
    id: int
    status: str
    valid: bool
    sold_at: datetime | None = None
    sold_price: Decimal | None = None
    created_at: datetime | None = None
    order_id: int | None = None
    ticket_type_id: int
    category: str
    subcategory: str
    description: str | None = None


class TicketLineIn(BaseModel):
    ticket_type_id: int
    quantity: int


class GenerateTicketsIn(BaseModel):
    tickets: List[TicketLineIn] = Field(default_factory=list)


class GenerateTicketsOut(BaseModel):
    message: str = "Tickets generated successfully"
    generatedTicketIds: List[int] = Field(default_factory=list)


class SellTicketsIn(BaseModel):
    tickets: List[TicketLineIn] = Field(default_factory=list)
    meals: List[MealLineIn] = Field(default_factory=list)
    user_id: Optional[int] = None
    description: str | None = None
    payments: Optional[List[PaymentIn]] = None


class CheckoutExistingIn(BaseModel):
    ticket_ids: List[int] = Field(default_factory=list)
    meals: List[MealLineIn] = Field(default_factory=list)
    user_id: Optional[int] = None
    description: str | None = None
    payments: Optional[List[PaymentIn]] = None


class CheckoutOut(BaseModel):
    message: str
    order_id: int
    grossTotal: Decimal
    discountAmount: Decimal
    finalTotal: Decimal
    ticket_ids: List[int] = Field(default_factory=list)


class ValidateTicketsIn(BaseModel):
    tickets: List[int] = Field(default_factory=list)
    valid: bool


class ValidateTicketsOut(BaseModel):
    message: str
    updatedTickets: List[int] = Field(default_factory=list)
    alreadyInState: List[int] = Field(default_factory=list)
    missing: List[int] = Field(default_factory=list)


class RefundIn(BaseModel):
    ticketIds: List[int] = Field(default_factory=list)


class RefundOut(BaseModel):
    message: str = "Refund successful"
    refundedTickets: List[int] = Field(default_factory=list)
    skippedTickets: List[int] = Field(default_factory=list)
    refundedAmount: Decimal


class TypeAssignmentIn(BaseModel):
    id: int = Field(..., gt=0)
    ticket_type_id: int = Field(..., gt=0)


class AssignTypesIn(BaseModel):
    assignments: List[TypeAssignmentIn] = Field(default_factory=list)


class TicketRevenueRow(BaseModel):
    category: str
    subcategory: str
    total_tickets: int
    total_revenue: Decimal
