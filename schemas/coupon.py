from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional


class CouponCreate(BaseModel):
    code: str
    discount_type: str = "PERCENT"
    discount_value: float
    min_cart_value: float = 0
    max_uses: int = 1
    user_id: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class CouponOut(BaseModel):
    id: int
    code: str
    discount_type: str
    discount_value: float
    min_cart_value: float
    max_uses: int
    current_uses: int
    user_id: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool

    class Config:
        from_attributes = True


class CouponAssign(BaseModel):
    customer_id: int
    uses: int = Field(default=1, ge=1)


class CustomerCouponOut(BaseModel):
    coupon_id: int
    code: str
    discount_type: str
    discount_value: float
    min_cart_value: float
    uses_remaining: int
    valid_until: Optional[datetime] = None

    @classmethod
    def from_assignment(cls, assignment) -> "CustomerCouponOut":
        coupon = assignment.coupon
        return cls(
            coupon_id=coupon.id,
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=float(coupon.discount_value),
            min_cart_value=float(coupon.min_cart_value),
            uses_remaining=assignment.uses_remaining,
            valid_until=coupon.valid_until,
        )
