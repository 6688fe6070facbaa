import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class DiscountType(str, enum.Enum):
    PERCENT = "PERCENT"
    FIXED = "FIXED"


class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    discount_type: Mapped[str] = mapped_column(String(20), default=DiscountType.PERCENT.value)
    # Percentage points for PERCENT coupons, a flat amount for FIXED ones
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    min_cart_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    max_uses: Mapped[int] = mapped_column(Integer, default=1)
    current_uses: Mapped[int] = mapped_column(Integer, default=0)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    valid_from: Mapped[datetime | None] = mapped_column(DateTime, default=datetime.now, nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    @property
    def remaining_uses(self) -> int:
        return max((self.max_uses or 0) - (self.current_uses or 0), 0)

    def __repr__(self) -> str:
        return f"Coupon(code={self.code!r}, type={self.discount_type}, value={self.discount_value})"
