"""Turn a customer's cart into a priced, stock-reserved, pending order."""
import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from core.config import settings
from core.db import atomic
from core.exceptions import CheckoutValidationError
from models.coupon import Coupon
from models.order import Order, OrderStatus
from models.user import User
from services import coupons as coupon_service
from services.cart import ShoppingCart
from services.email import send_templated_email
from services.invoice import generate_invoice
from services.pricing import PriceBreakdown, calculate_price
from services.stock import reduce_stock
from services.system_settings import get_global_min_order_amount

logger = structlog.get_logger(__name__)

DELIVERY_SLOTS = ("09:00 - 12:00", "12:00 - 15:00", "15:00 - 18:00", "18:00 - 21:00")


class CheckoutStatus(str, enum.Enum):
    PLACED = "placed"
    OUT_OF_STOCK = "out_of_stock"
    COUPON_UNAVAILABLE = "coupon_unavailable"


@dataclass
class CheckoutResult:
    status: CheckoutStatus
    order: Optional[Order] = None
    product_id: Optional[int] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == CheckoutStatus.PLACED


class _CheckoutAborted(Exception):
    def __init__(self, result: CheckoutResult):
        self.result = result
        super().__init__(result.message)


def slot_start(slot: str) -> time:
    hour, minute = slot.split(" - ")[0].split(":")
    return time(int(hour), int(minute))


def _slot_error(delivery_date: date, slot: str, now: datetime) -> Optional[str]:
    today = now.date()
    if delivery_date < today:
        return "Delivery date cannot be in the past!"
    if delivery_date > today + timedelta(days=settings.DELIVERY_BOOKING_DAYS):
        return f"Delivery date can be at most {settings.DELIVERY_BOOKING_DAYS} days ahead!"
    requested = datetime.combine(delivery_date, slot_start(slot))
    if requested - now < timedelta(minutes=settings.SLOT_CUTOFF_MINUTES):
        return "This delivery time slot is no longer available!"
    if requested - now > timedelta(hours=settings.MAX_DELIVERY_HOURS):
        return f"Delivery date can be at most {settings.MAX_DELIVERY_HOURS} hours from now!"
    return None


def available_slots(delivery_date: date, now: datetime | None = None) -> List[str]:
    now = now or datetime.now()
    return [slot for slot in DELIVERY_SLOTS if _slot_error(delivery_date, slot, now) is None]


def validate_delivery(delivery_date: Optional[date], slot: Optional[str], now: datetime | None = None) -> datetime:
    """Check the requested delivery date and slot; return the requested delivery time."""
    now = now or datetime.now()
    if delivery_date is None:
        raise CheckoutValidationError("Select a delivery date!")
    if not slot:
        raise CheckoutValidationError("Select a delivery time!")
    if slot not in DELIVERY_SLOTS:
        raise CheckoutValidationError(f"Unknown delivery time slot: {slot}")
    error = _slot_error(delivery_date, slot, now)
    if error:
        raise CheckoutValidationError(error)
    return datetime.combine(delivery_date, slot_start(slot))


def resolve_coupon(db: Session, cart: ShoppingCart, customer: User, now: datetime | None = None) -> Optional[Coupon]:
    """The cart's applied coupon, if it still applies; raise otherwise."""
    if not cart.coupon_code:
        return None
    coupon = coupon_service.find_by_code(db, cart.coupon_code)
    if coupon is None:
        raise CheckoutValidationError(f"Coupon {cart.coupon_code} is not valid")
    if not coupon_service.applies_for_customer(db, coupon, cart.subtotal, customer.id, now):
        raise CheckoutValidationError(f"Coupon {coupon.code} cannot be applied to this cart")
    return coupon


def preview(db: Session, cart: ShoppingCart, customer: User, now: datetime | None = None) -> PriceBreakdown:
    """Price the cart as checkout would, ignoring a coupon that no longer applies."""
    coupon = None
    if cart.coupon_code:
        candidate = coupon_service.find_by_code(db, cart.coupon_code)
        if candidate and coupon_service.applies_for_customer(db, candidate, cart.subtotal, customer.id, now):
            coupon = candidate
    return calculate_price(cart.items, customer.loyalty_discount, coupon)


def increment_customer_order_count(db: Session, customer_id: int) -> bool:
    stmt = (
        update(User)
        .where(User.id == customer_id)
        .values(total_orders=User.total_orders + 1)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def _render_invoice(order: Order, customer: User) -> Optional[bytes]:
    try:
        return generate_invoice(order, customer)
    except Exception:
        logger.warning("invoice_generation_failed", order_id=order.id, exc_info=True)
        return None


def _send_confirmation(order: Order, customer: User) -> None:
    if not customer.email:
        return
    try:
        send_templated_email(
            customer.email,
            f"Your order #{order.id}",
            "emails/order_confirmation.txt",
            {
                "name": customer.full_name or customer.username,
                "order_id": order.id,
                "total": order.total_cost,
                "delivery_time": order.requested_delivery_time.strftime("%d.%m.%Y %H:%M"),
                "cancel_until": order.cancellation_deadline.strftime("%H:%M"),
            },
        )
    except Exception:
        logger.warning("order_confirmation_failed", order_id=order.id, exc_info=True)


def checkout(
    db: Session,
    cart: ShoppingCart,
    customer: User,
    delivery_date: Optional[date],
    slot: Optional[str],
    notes: str | None = None,
    now: datetime | None = None,
) -> CheckoutResult:
    """Place an order for everything in ``cart``.

    Raises ``CheckoutValidationError`` before writing anything when the cart
    or delivery details are rejected. Creating the order, reducing stock,
    counting the customer's order, using the coupon and attaching the invoice
    happen in one transaction. Losing a stock or coupon race to another
    checkout rolls all of it back and is reported through the result status.
    The cart is cleared only once the order is committed.
    """
    now = now or datetime.now()

    if cart.is_empty:
        raise CheckoutValidationError("Your cart is empty!")
    subtotal = cart.subtotal
    minimum = get_global_min_order_amount(db)
    if subtotal < minimum:
        raise CheckoutValidationError(f"Minimum cart amount must be {minimum:.2f}! Current: {subtotal:.2f}")
    requested_time = validate_delivery(delivery_date, slot, now)
    coupon = resolve_coupon(db, cart, customer, now)
    assigned = coupon is not None and coupon_service.get_customer_coupon(db, customer.id, coupon.id) is not None

    price = calculate_price(cart.items, customer.loyalty_discount, coupon).rounded()

    try:
        with atomic(db):
            order = Order(
                customer_id=customer.id,
                order_time=now,
                requested_delivery_time=requested_time,
                status=OrderStatus.PENDING.value,
                subtotal=price.subtotal,
                discount_amount=price.discount,
                vat_amount=price.vat,
                total_cost=price.total,
                coupon_code=coupon.code if coupon else None,
                notes=notes,
            )
            order.items = [item.to_order_item() for item in cart.items]
            db.add(order)
            db.flush()

            for item in order.items:
                if not reduce_stock(db, item.product_id, item.amount):
                    raise _CheckoutAborted(
                        CheckoutResult(
                            CheckoutStatus.OUT_OF_STOCK,
                            product_id=item.product_id,
                            message=f"Sorry, {item.product_name} was just bought by another customer "
                                    f"and there is not enough left in stock.",
                        )
                    )

            increment_customer_order_count(db, customer.id)

            if coupon is not None:
                used = coupon_service.increment_uses(db, coupon.id)
                if used and assigned:
                    used = coupon_service.use_customer_coupon(db, customer.id, coupon.id)
                if not used:
                    raise _CheckoutAborted(
                        CheckoutResult(
                            CheckoutStatus.COUPON_UNAVAILABLE,
                            message=f"Coupon {coupon.code} was used up moments ago.",
                        )
                    )

            order.invoice = _render_invoice(order, customer)
    except _CheckoutAborted as aborted:
        logger.info(
            "checkout_aborted",
            customer_id=customer.id,
            status=aborted.result.status.value,
            product_id=aborted.result.product_id,
        )
        db.expire_all()
        return aborted.result

    db.expire_all()
    cart.clear()
    logger.info(
        "order_placed",
        order_id=order.id,
        customer_id=customer.id,
        items=len(order.items),
        total=str(order.total_cost),
        coupon=order.coupon_code,
    )
    _send_confirmation(order, customer)
    return CheckoutResult(CheckoutStatus.PLACED, order=order)
