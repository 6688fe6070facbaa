from datetime import date, datetime
from pydantic import BaseModel
from typing import List, Optional


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    amount: float
    unit_price: float
    total_price: float

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    customer_id: int
    carrier_id: Optional[int] = None
    status: str
    order_time: datetime
    requested_delivery_time: datetime
    actual_delivery_time: Optional[datetime] = None
    subtotal: float
    discount_amount: float
    vat_amount: float
    total_cost: float
    coupon_code: Optional[str] = None
    notes: Optional[str] = None
    items: List[OrderItemOut]

    class Config:
        from_attributes = True


class CheckoutRequest(BaseModel):
    delivery_date: Optional[date] = None
    delivery_slot: Optional[str] = None
    notes: Optional[str] = None


class CheckoutResponse(BaseModel):
    status: str
    message: Optional[str] = None
    order: OrderOut


class CancellationInfo(BaseModel):
    order_id: int
    can_be_cancelled: bool
    minutes_remaining: int


class DeliverRequest(BaseModel):
    delivery_time: Optional[datetime] = None
