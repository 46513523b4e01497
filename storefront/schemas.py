# storefront/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

MAX_QUANTITY_PER_ITEM = 100
MAX_ITEMS_PER_ORDER = 50


# 🛒 Checkout
class CheckoutItem(BaseModel):
    product_id: int
    quantity: int = Field(gt=0, le=MAX_QUANTITY_PER_ITEM)


class CheckoutRequest(BaseModel):
    items: List[CheckoutItem] = Field(min_length=1, max_length=MAX_ITEMS_PER_ORDER)


class CheckoutOut(BaseModel):
    order_id: int
    transaction_uuid: str
    total_amount: str
    form_action: str
    fields: Dict[str, str]


# 📦 Orders
class OrderItemOut(BaseModel):
    product_id: int
    quantity: int
    unit_price: Decimal

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    transaction_uuid: str
    status: str
    subtotal: Decimal
    shipping_charge: Decimal
    tax: Decimal
    total_amount: Decimal
    esewa_ref_id: Optional[str] = None
    created_at: datetime
    settled_at: Optional[datetime] = None
    items: List[OrderItemOut] = []

    class Config:
        from_attributes = True


class OrderPage(BaseModel):
    orders: List[OrderOut]
    page: int
    pages: int
    count: int


# 💳 Payment verification
class PaymentStatusCheck(BaseModel):
    transaction_uuid: str = Field(min_length=1, max_length=64)


class PaymentVerificationOut(BaseModel):
    success: bool
    status: str
    transaction_uuid: str
    message: str
