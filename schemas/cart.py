from datetime import date
from pydantic import BaseModel, Field
from typing import List, Optional


class CartItemIn(BaseModel):
    product_id: int
    amount: float = Field(gt=0)


class CartItemUpdate(BaseModel):
    amount: float


class CartCouponIn(BaseModel):
    code: str


class CartItemOut(BaseModel):
    product_id: int
    product_name: str
    amount: float
    unit_price: float
    total_price: float
    is_available: bool


class CartOut(BaseModel):
    items: List[CartItemOut]
    coupon_code: Optional[str] = None
    subtotal: float
    item_count: int


class CartSummary(BaseModel):
    subtotal: float
    loyalty_discount: float
    coupon_discount: float
    discount: float
    vat: float
    total: float
    coupon_code: Optional[str] = None
    min_order_amount: float
    meets_minimum: bool
    unavailable_product_ids: List[int] = []


class DeliverySlots(BaseModel):
    delivery_date: date
    slots: List[str]
