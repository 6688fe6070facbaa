from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from core.exceptions import CouponError
from models.coupon import Coupon, DiscountType
from models.customer_coupon import CustomerCoupon

logger = structlog.get_logger(__name__)


def _dec(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value if value is not None else 0))


def is_valid(coupon: Coupon, now: datetime | None = None) -> bool:
    """Active, inside its validity window and not used up."""
    now = now or datetime.now()
    if not coupon.is_active:
        return False
    if coupon.valid_from is not None and now < coupon.valid_from:
        return False
    if coupon.valid_until is not None and now > coupon.valid_until:
        return False
    return (coupon.current_uses or 0) < (coupon.max_uses or 0)


def can_apply(
    coupon: Coupon,
    cart_subtotal,
    now: datetime | None = None,
    customer_id: int | None = None,
    assigned_uses: int | None = None,
) -> bool:
    """Whether ``coupon`` may be used on a cart worth ``cart_subtotal``.

    ``assigned_uses`` is what is left of the customer's personal allotment,
    or None when the coupon was never assigned to them. An allotment lets the
    customer use a coupon reserved for someone else; a spent allotment blocks
    the coupon for them.
    """
    if not is_valid(coupon, now):
        return False
    if assigned_uses is not None:
        if assigned_uses <= 0:
            return False
    elif coupon.user_id is not None and coupon.user_id != customer_id:
        return False
    return _dec(cart_subtotal) >= _dec(coupon.min_cart_value)


def calculate_discount(coupon: Coupon, subtotal) -> Decimal:
    """Discount granted by ``coupon`` on ``subtotal``; never more than the subtotal."""
    subtotal = _dec(subtotal)
    if subtotal <= 0:
        return Decimal("0")
    value = _dec(coupon.discount_value)
    if coupon.discount_type == DiscountType.FIXED.value:
        discount = value
    else:
        discount = subtotal * (value / Decimal("100"))
    return max(min(discount, subtotal), Decimal("0"))


def increment_uses(db: Session, coupon_id: int) -> bool:
    """Count one more use, only while the coupon is active and below ``max_uses``.

    Runs inside the caller's transaction; does not commit.
    """
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            Coupon.is_active.is_(True),
            Coupon.current_uses < Coupon.max_uses,
        )
        .values(current_uses=Coupon.current_uses + 1)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def find_by_code(db: Session, code: str) -> Optional[Coupon]:
    """Active coupon with this code, if any."""
    stmt = select(Coupon).where(Coupon.code == code.strip().upper(), Coupon.is_active.is_(True))
    return db.execute(stmt).scalar_one_or_none()


def list_coupons(db: Session) -> List[Coupon]:
    stmt = select(Coupon).order_by(Coupon.valid_until.desc(), Coupon.id)
    return list(db.execute(stmt).scalars())


def create_coupon(
    db: Session,
    code: str,
    discount_value,
    discount_type: DiscountType = DiscountType.PERCENT,
    min_cart_value=0,
    max_uses: int = 1,
    user_id: int | None = None,
    valid_from: datetime | None = None,
    valid_until: datetime | None = None,
) -> Coupon:
    code = code.strip().upper()
    if not code:
        raise CouponError("Coupon code is required")
    if _dec(discount_value) <= 0:
        raise CouponError("Discount must be greater than zero", code=code)
    if discount_type == DiscountType.PERCENT and _dec(discount_value) > 100:
        raise CouponError("Percentage discount cannot exceed 100", code=code)
    if max_uses < 1:
        raise CouponError("Coupon must allow at least one use", code=code)
    if valid_from and valid_until and valid_until < valid_from:
        raise CouponError("Coupon expires before it starts", code=code)
    if db.execute(select(Coupon.id).where(Coupon.code == code)).first():
        raise CouponError("Coupon code already exists", code=code)

    coupon = Coupon(
        code=code,
        discount_type=DiscountType(discount_type).value,
        discount_value=_dec(discount_value),
        min_cart_value=_dec(min_cart_value),
        max_uses=max_uses,
        current_uses=0,
        user_id=user_id,
        valid_from=valid_from or datetime.now(),
        valid_until=valid_until,
        is_active=True,
    )
    db.add(coupon)
    db.flush()
    logger.info("coupon_created", code=code, discount_type=coupon.discount_type, max_uses=max_uses)
    return coupon


def deactivate_coupon(db: Session, coupon_id: int) -> bool:
    stmt = (
        update(Coupon)
        .where(Coupon.id == coupon_id)
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount > 0


def delete_coupon(db: Session, coupon_id: int) -> bool:
    stmt = delete(Coupon).where(Coupon.id == coupon_id).execution_options(synchronize_session=False)
    return db.execute(stmt).rowcount > 0


def delete_expired_coupons(db: Session, now: datetime | None = None) -> int:
    now = now or datetime.now()
    stmt = (
        delete(Coupon)
        .where(Coupon.valid_until.is_not(None), Coupon.valid_until < now)
        .execution_options(synchronize_session=False)
    )
    removed = db.execute(stmt).rowcount
    if removed:
        logger.info("expired_coupons_deleted", count=removed)
    return removed


def get_customer_coupon(db: Session, customer_id: int, coupon_id: int) -> Optional[CustomerCoupon]:
    stmt = (
        select(CustomerCoupon)
        .where(CustomerCoupon.customer_id == customer_id, CustomerCoupon.coupon_id == coupon_id)
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


def applies_for_customer(db: Session, coupon: Coupon, cart_subtotal, customer_id: int, now: datetime | None = None) -> bool:
    """``can_apply`` with the customer's personal allotment looked up."""
    assignment = get_customer_coupon(db, customer_id, coupon.id)
    assigned_uses = assignment.uses_remaining if assignment else None
    return can_apply(coupon, cart_subtotal, now=now, customer_id=customer_id, assigned_uses=assigned_uses)


def assign_to_customer(db: Session, coupon_id: int, customer_id: int, uses: int = 1) -> CustomerCoupon:
    """Grant ``uses`` personal uses of a coupon; repeat grants add up.

    Does not commit.
    """
    if uses < 1:
        raise CouponError("Assign at least one use")
    coupon = db.get(Coupon, coupon_id)
    if coupon is None:
        raise CouponError(f"Coupon {coupon_id} not found")

    stmt = (
        update(CustomerCoupon)
        .where(CustomerCoupon.customer_id == customer_id, CustomerCoupon.coupon_id == coupon_id)
        .values(uses_remaining=CustomerCoupon.uses_remaining + uses)
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount == 0:
        db.add(CustomerCoupon(customer_id=customer_id, coupon_id=coupon_id, uses_remaining=uses))
        db.flush()
    logger.info("coupon_assigned", code=coupon.code, customer_id=customer_id, uses=uses)
    return get_customer_coupon(db, customer_id, coupon_id)


def list_customer_coupons(db: Session, customer_id: int, now: datetime | None = None) -> List[CustomerCoupon]:
    """Assignments the customer can still spend, biggest discount first."""
    now = now or datetime.now()
    stmt = (
        select(CustomerCoupon)
        .join(Coupon, CustomerCoupon.coupon_id == Coupon.id)
        .where(
            CustomerCoupon.customer_id == customer_id,
            CustomerCoupon.uses_remaining > 0,
            Coupon.is_active.is_(True),
            or_(Coupon.valid_until.is_(None), Coupon.valid_until > now),
        )
        .order_by(Coupon.discount_value.desc(), Coupon.id)
    )
    return list(db.execute(stmt).scalars())


def use_customer_coupon(db: Session, customer_id: int, coupon_id: int) -> bool:
    """Spend one personal use, only while some are left.

    Runs inside the caller's transaction; does not commit.
    """
    stmt = (
        update(CustomerCoupon)
        .where(
            CustomerCoupon.customer_id == customer_id,
            CustomerCoupon.coupon_id == coupon_id,
            CustomerCoupon.uses_remaining > 0,
        )
        .values(uses_remaining=CustomerCoupon.uses_remaining - 1)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1
