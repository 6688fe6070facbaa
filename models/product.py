from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base

DEFAULT_THRESHOLD = Decimal("5.0")


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), index=True)
    product_type: Mapped[str] = mapped_column(String(20), default="vegetable")  # vegetable, fruit
    unit_type: Mapped[str] = mapped_column(String(10), default="kg")  # kg, piece
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    stock: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    threshold: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=DEFAULT_THRESHOLD)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def is_below_threshold(self) -> bool:
        threshold = self.threshold if self.threshold is not None else DEFAULT_THRESHOLD
        return Decimal(str(self.stock or 0)) <= Decimal(str(threshold))

    @property
    def display_price(self) -> Decimal:
        """Shelf price; doubled while stock sits at or below the threshold."""
        price = Decimal(str(self.price))
        if self.is_below_threshold:
            return price * 2
        return price

    @property
    def is_in_stock(self) -> bool:
        return Decimal(str(self.stock or 0)) > 0

    def is_amount_available(self, amount) -> bool:
        return Decimal(str(self.stock or 0)) >= Decimal(str(amount))
