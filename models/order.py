import enum
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Numeric, LargeBinary, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.config import settings
from core.db import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    SELECTED = "selected"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    carrier_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    order_time: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    requested_delivery_time: Mapped[datetime] = mapped_column(DateTime)
    actual_delivery_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING.value, index=True)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    vat_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    coupon_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    invoice: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    customer = relationship("User", foreign_keys=[customer_id])
    carrier = relationship("User", foreign_keys=[carrier_id])
    items = relationship("OrderItem", cascade="all, delete-orphan", back_populates="order")

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def cancellation_deadline(self) -> datetime:
        return self.order_time + timedelta(minutes=settings.CANCELLATION_WINDOW_MINUTES)

    def can_be_cancelled(self, now: datetime | None = None) -> bool:
        """Whether the customer may still cancel this order themselves."""
        if self.order_status != OrderStatus.PENDING:
            return False
        now = now or datetime.now()
        return now < self.cancellation_deadline

    def cancellation_time_remaining(self, now: datetime | None = None) -> int:
        """Whole minutes left in the customer cancellation window, never negative."""
        now = now or datetime.now()
        if not self.can_be_cancelled(now):
            return 0
        remaining = self.cancellation_deadline - now
        return max(int(remaining.total_seconds() // 60), 0)

    def __repr__(self) -> str:
        return f"Order(id={self.id}, customer_id={self.customer_id}, status={self.status!r}, total_cost={self.total_cost})"
