"""Customer ratings of the carrier who delivered their order."""
from typing import List

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.db import atomic
from core.exceptions import OrderAccessError, PersistenceError, RatingError
from models.carrier_rating import MAX_RATING, MIN_RATING, CarrierRating
from models.order import OrderStatus
from models.user import User
from services.orders import get_order

logger = structlog.get_logger(__name__)


def has_rated(db: Session, order_id: int, customer_id: int) -> bool:
    stmt = select(CarrierRating.id).where(CarrierRating.order_id == order_id, CarrierRating.customer_id == customer_id)
    return db.execute(stmt).first() is not None


def rate_carrier(db: Session, order_id: int, customer: User, rating: int, comment: str | None = None) -> CarrierRating:
    """Record ``customer``'s rating of the carrier who delivered ``order_id``.

    Only the ordering customer may rate, only once, and only after delivery.
    """
    if not MIN_RATING <= rating <= MAX_RATING:
        raise RatingError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
    order = get_order(db, order_id)
    if order.customer_id != customer.id:
        raise OrderAccessError(order_id, "Only the customer who placed the order can rate it")
    if order.status != OrderStatus.DELIVERED.value or order.carrier_id is None:
        raise RatingError("Only delivered orders can be rated")
    if has_rated(db, order_id, customer.id):
        raise RatingError("This order has already been rated")

    entry = CarrierRating(
        carrier_id=order.carrier_id,
        customer_id=customer.id,
        order_id=order_id,
        rating=rating,
        comment=(comment or "").strip() or None,
    )
    try:
        with atomic(db):
            db.add(entry)
    except PersistenceError as exc:
        # A concurrent rating of the same order hit the unique constraint first
        if isinstance(exc.__cause__, IntegrityError):
            raise RatingError("This order has already been rated") from exc
        raise
    logger.info("carrier_rated", order_id=order_id, carrier_id=entry.carrier_id, rating=rating)
    return entry


def average_rating(db: Session, carrier_id: int) -> float:
    """Mean score for ``carrier_id``; 0.0 until the first rating."""
    avg = db.execute(select(func.avg(CarrierRating.rating)).where(CarrierRating.carrier_id == carrier_id)).scalar()
    return round(float(avg), 2) if avg is not None else 0.0


def list_carrier_ratings(db: Session, carrier_id: int) -> List[CarrierRating]:
    stmt = (
        select(CarrierRating)
        .where(CarrierRating.carrier_id == carrier_id)
        .order_by(CarrierRating.created_at.desc(), CarrierRating.id.desc())
    )
    return list(db.execute(stmt).scalars())
