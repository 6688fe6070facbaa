from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from core.access import get_current_user, require_role
from core.db import get_db
from models.order import Order, OrderStatus
from models.user import User, UserRole
from schemas.order import CancellationInfo, CheckoutRequest, CheckoutResponse, DeliverRequest, OrderOut
from schemas.rating import RatingIn, RatingOut
from services import orders as order_service
from services import ratings as rating_service
from services.cart import discard_cart, load_cart
from services.checkout import checkout

router = APIRouter(prefix="/orders", tags=["orders"])


def _visible_order(db: Session, order_id: int, user: User) -> Order:
    order = order_service.get_order(db, order_id)
    if user.role == UserRole.OWNER.value:
        return order
    if user.role == UserRole.CUSTOMER.value and order.customer_id == user.id:
        return order
    if user.role == UserRole.CARRIER.value and (
        order.carrier_id == user.id or order.status == OrderStatus.PENDING.value
    ):
        return order
    raise HTTPException(status_code=403, detail="You cannot view this order")


@router.post("/checkout", response_model=CheckoutResponse, status_code=201)
def place_order(
    data: CheckoutRequest,
    user: User = Depends(require_role(UserRole.CUSTOMER)),
    db: Session = Depends(get_db),
):
    cart = load_cart(db, user.id)
    result = checkout(db, cart, user, data.delivery_date, data.delivery_slot, notes=data.notes)
    if not result.ok:
        raise HTTPException(status_code=409, detail=result.message)
    discard_cart(user.id)
    return CheckoutResponse(
        status=result.status.value,
        message="Your order has been placed.",
        order=OrderOut.model_validate(result.order),
    )


@router.get("/", response_model=List[OrderOut])
def list_orders(
    status: Optional[OrderStatus] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if user.role == UserRole.CUSTOMER.value:
        return order_service.list_customer_orders(db, user.id)
    if user.role == UserRole.CARRIER.value:
        return order_service.list_carrier_orders(db, user.id, status)
    return order_service.list_orders(db, status)


@router.get("/available", response_model=List[OrderOut])
def list_available_orders(
    user: User = Depends(require_role(UserRole.CARRIER, UserRole.OWNER)),
    db: Session = Depends(get_db),
):
    return order_service.list_available_orders(db)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _visible_order(db, order_id, user)


@router.post("/{order_id}/accept", response_model=OrderOut)
def accept_order(
    order_id: int,
    user: User = Depends(require_role(UserRole.CARRIER)),
    db: Session = Depends(get_db),
):
    if not order_service.assign_carrier(db, order_id, user.id):
        raise HTTPException(status_code=409, detail="This order was already taken by another carrier.")
    return order_service.get_order(db, order_id)


@router.post("/{order_id}/deliver", response_model=OrderOut)
def deliver_order(
    order_id: int,
    data: Optional[DeliverRequest] = None,
    user: User = Depends(require_role(UserRole.CARRIER)),
    db: Session = Depends(get_db),
):
    delivery_time = data.delivery_time if data else None
    if not order_service.mark_delivered(db, order_id, delivery_time=delivery_time, carrier_id=user.id):
        raise HTTPException(status_code=409, detail="Only orders you have accepted and not yet completed can be delivered.")
    return order_service.get_order(db, order_id)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not order_service.cancel_order(db, order_id, user):
        raise HTTPException(status_code=409, detail="This order can no longer be cancelled.")
    return order_service.get_order(db, order_id)


@router.get("/{order_id}/cancellation", response_model=CancellationInfo)
def cancellation_info(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = _visible_order(db, order_id, user)
    return CancellationInfo(
        order_id=order.id,
        can_be_cancelled=order.can_be_cancelled(),
        minutes_remaining=order.cancellation_time_remaining(),
    )


@router.get("/{order_id}/invoice")
def download_invoice(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = _visible_order(db, order_id, user)
    if not order.invoice:
        raise HTTPException(status_code=404, detail="Invoice not available")
    return Response(
        content=order.invoice,
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="invoice_{order.id}.txt"'},
    )


@router.post("/{order_id}/rating", response_model=RatingOut, status_code=201)
def rate_order(
    order_id: int,
    data: RatingIn,
    user: User = Depends(require_role(UserRole.CUSTOMER)),
    db: Session = Depends(get_db),
):
    return rating_service.rate_carrier(db, order_id, user, data.rating, data.comment)
