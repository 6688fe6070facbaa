import enum
from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    CARRIER = "carrier"
    OWNER = "owner"


# (minimum completed orders, discount percent), highest tier first
LOYALTY_TIERS = ((20, 15.0), (10, 10.0), (5, 5.0))


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.CUSTOMER.value)
    loyalty_points: Mapped[int] = mapped_column(Integer, default=0)
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    @property
    def loyalty_discount(self) -> float:
        """Loyalty discount percentage earned from order history."""
        orders = self.total_orders or 0
        for min_orders, percent in LOYALTY_TIERS:
            if orders >= min_orders:
                return percent
        return 0.0

    def __repr__(self) -> str:
        return f"User(id={self.id}, username={self.username!r}, role={self.role!r})"
