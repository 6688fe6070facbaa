from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base

MIN_RATING = 1
MAX_RATING = 5


class CarrierRating(Base):
    __tablename__ = "carrier_ratings"
    __table_args__ = (
        CheckConstraint(f"rating >= {MIN_RATING} AND rating <= {MAX_RATING}", name="ck_carrier_rating_range"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    carrier_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    # One rating per order
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), unique=True)
    rating: Mapped[int] = mapped_column(Integer)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    customer = relationship("User", foreign_keys=[customer_id])

    def __repr__(self) -> str:
        return f"CarrierRating(order_id={self.order_id}, carrier_id={self.carrier_id}, rating={self.rating})"
