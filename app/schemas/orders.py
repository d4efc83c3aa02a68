from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class PaymentIn(BaseModel):
    # checked against the closed method set by the payment records service
    method: str
    amount: Decimal


class MealLineIn(BaseModel):
    meal_id: int
    quantity: int


class AmendTicketIn(BaseModel):
    ticket_type_id: int
    quantity: int = Field(..., ge=1)


class AmendMealIn(BaseModel):
    meal_id: int
    quantity: int = Field(..., ge=1)
    price: Decimal = Field(..., gt=0)


class RemoveMealIn(BaseModel):
    meal_id: int
    quantity: int = Field(..., ge=1)


class AmendOrderIn(BaseModel):
    addedTickets: List[AmendTicketIn] = Field(default_factory=list)
    removedTickets: List[AmendTicketIn] = Field(default_factory=list)
    addedMeals: List[AmendMealIn] = Field(default_factory=list)
    removedMeals: List[RemoveMealIn] = Field(default_factory=list)
    payments: Optional[List[PaymentIn]] = None
    validatePayments: bool = False


class AmendOrderOut(BaseModel):
    message: str = "Order updated successfully"
    order_id: int
    previousTotal: Decimal
    totalAmount: Decimal
    addedTicketIds: List[int] = Field(default_factory=list)
    releasedTicketIds: List[int] = Field(default_factory=list)
    paymentsReplaced: bool = False


class OrderTicketOut(BaseModel):
    ticket_id: int
    ticket_type_id: int
    category: str
    subcategory: str
    status: str
    valid: bool
    sold_price: Decimal | None = None


class OrderMealOut(BaseModel):
    meal_id: int
    name: str
    quantity: int
    price_at_order: Decimal


class PaymentOut(BaseModel):
    method: str
    amount: Decimal


class OrderOut(BaseModel):
    order_id: int
    user_id: int
    user_name: str = ""
    description: str | None = None
    created_at: datetime
    total_amount: Decimal
    gross_total: Decimal | None = None
    discount: Decimal

    tickets: List[OrderTicketOut] = Field(default_factory=list)
    meals: List[OrderMealOut] = Field(default_factory=list)
    payments: List[PaymentOut] = Field(default_factory=list)
