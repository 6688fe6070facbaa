from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


class CustomerCoupon(Base):
    """Personal uses of a coupon handed to one customer by the owner."""

    __tablename__ = "customer_coupons"
    __table_args__ = (UniqueConstraint("customer_id", "coupon_id", name="uq_customer_coupon"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    coupon_id: Mapped[int] = mapped_column(ForeignKey("coupons.id", ondelete="CASCADE"), index=True)
    uses_remaining: Mapped[int] = mapped_column(Integer, default=1)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    coupon = relationship("Coupon")

    def __repr__(self) -> str:
        return f"CustomerCoupon(customer_id={self.customer_id}, coupon_id={self.coupon_id}, uses_remaining={self.uses_remaining})"
