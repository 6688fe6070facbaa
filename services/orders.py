"""Order state machine.

    pending -> selected -> delivered
    pending | selected -> cancelled

Every transition is one conditional UPDATE whose WHERE clause carries the
expected current state. Whoever changes the row wins; everyone else gets
``False`` back, which is an ordinary outcome rather than an error.
"""
from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from core.config import settings
from core.db import atomic
from core.exceptions import OrderAccessError, OrderNotFoundError
from models.order import Order, OrderStatus
from models.user import User, UserRole
from services.stock import restore_stock

logger = structlog.get_logger(__name__)

CANCELLABLE_STATUSES = (OrderStatus.PENDING.value, OrderStatus.SELECTED.value)


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def assign_carrier(db: Session, order_id: int, carrier_id: int) -> bool:
    """Claim a pending order for ``carrier_id``.

    Returns ``False`` when another carrier claimed it first or the order is no
    longer pending.
    """
    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
        .values(carrier_id=carrier_id, status=OrderStatus.SELECTED.value)
        .execution_options(synchronize_session=False)
    )
    with atomic(db):
        assigned = db.execute(stmt).rowcount == 1
    db.expire_all()

    if not assigned:
        # Distinguish a lost race from a bad id
        get_order(db, order_id)
        logger.info("carrier_assignment_lost", order_id=order_id, carrier_id=carrier_id)
        return False
    logger.info("carrier_assigned", order_id=order_id, carrier_id=carrier_id)
    return True


def mark_delivered(
    db: Session,
    order_id: int,
    delivery_time: datetime | None = None,
    carrier_id: int | None = None,
) -> bool:
    """Complete a selected order. Only selected orders can be delivered, and
    when ``carrier_id`` is given only by the carrier who accepted it."""
    criteria = [Order.id == order_id, Order.status == OrderStatus.SELECTED.value]
    if carrier_id is not None:
        criteria.append(Order.carrier_id == carrier_id)
    stmt = (
        update(Order)
        .where(*criteria)
        .values(status=OrderStatus.DELIVERED.value, actual_delivery_time=delivery_time or datetime.now())
        .execution_options(synchronize_session=False)
    )
    with atomic(db):
        delivered = db.execute(stmt).rowcount == 1
    db.expire_all()

    if not delivered:
        get_order(db, order_id)
        logger.info("delivery_rejected", order_id=order_id, carrier_id=carrier_id)
        return False
    logger.info("order_delivered", order_id=order_id, carrier_id=carrier_id)
    return True


def _check_cancel_access(order: Order, actor: User) -> None:
    if actor.role not in {role.value for role in UserRole}:
        raise OrderAccessError(order.id)
    if actor.role == UserRole.CUSTOMER.value and order.customer_id != actor.id:
        raise OrderAccessError(order.id, "You can only cancel your own orders")
    if actor.role == UserRole.CARRIER.value and order.carrier_id not in (None, actor.id):
        raise OrderAccessError(order.id, "This order is assigned to another carrier")


def cancel_order(db: Session, order_id: int, actor: User, now: datetime | None = None) -> bool:
    """Cancel an order and put its items back in stock.

    Customers may cancel their own pending orders within the cancellation
    window. Carriers and the owner may cancel pending or selected orders at
    any time. Stock is restored in the same transaction as the status change
    and only by the caller that actually made the change, so an order's items
    are never restored twice.
    """
    now = now or datetime.now()
    order = get_order(db, order_id)
    _check_cancel_access(order, actor)
    items = list(order.items)

    criteria = [Order.id == order_id]
    if actor.role == UserRole.CUSTOMER.value:
        window_start = now - timedelta(minutes=settings.CANCELLATION_WINDOW_MINUTES)
        criteria += [Order.status == OrderStatus.PENDING.value, Order.order_time > window_start]
    else:
        criteria.append(Order.status.in_(CANCELLABLE_STATUSES))
        if actor.role == UserRole.CARRIER.value:
            criteria.append(or_(Order.carrier_id.is_(None), Order.carrier_id == actor.id))

    stmt = (
        update(Order)
        .where(*criteria)
        .values(status=OrderStatus.CANCELLED.value)
        .execution_options(synchronize_session=False)
    )
    with atomic(db):
        cancelled = db.execute(stmt).rowcount == 1
        if cancelled:
            for item in items:
                restore_stock(db, item.product_id, item.amount)
    db.expire_all()

    if cancelled:
        logger.info("order_cancelled", order_id=order_id, by=actor.role, actor_id=actor.id, items=len(items))
    else:
        logger.info("cancellation_rejected", order_id=order_id, by=actor.role, actor_id=actor.id)
    return cancelled


def list_customer_orders(db: Session, customer_id: int) -> List[Order]:
    stmt = select(Order).where(Order.customer_id == customer_id).order_by(Order.order_time.desc())
    return list(db.execute(stmt).scalars())


def list_carrier_orders(db: Session, carrier_id: int, status: Optional[OrderStatus] = None) -> List[Order]:
    stmt = select(Order).where(Order.carrier_id == carrier_id)
    if status is not None:
        stmt = stmt.where(Order.status == OrderStatus(status).value)
    return list(db.execute(stmt.order_by(Order.order_time.desc())).scalars())


def list_available_orders(db: Session) -> List[Order]:
    """Pending orders a carrier can accept, soonest delivery first."""
    stmt = (
        select(Order)
        .where(Order.status == OrderStatus.PENDING.value)
        .order_by(Order.requested_delivery_time.asc())
    )
    return list(db.execute(stmt).scalars())


def list_orders(db: Session, status: Optional[OrderStatus] = None) -> List[Order]:
    stmt = select(Order)
    if status is not None:
        stmt = stmt.where(Order.status == OrderStatus(status).value)
    return list(db.execute(stmt.order_by(Order.order_time.desc())).scalars())
