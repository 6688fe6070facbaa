from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session
from typing import List

from core.access import require_role
from core.db import get_db, atomic
from models.coupon import Coupon, DiscountType
from models.user import User, UserRole
from schemas.coupon import CouponAssign, CouponCreate, CouponOut, CustomerCouponOut
from services import coupons as coupon_service

router = APIRouter(prefix="/coupons", tags=["coupons"])

owner_only = require_role(UserRole.OWNER)


@router.get("/", response_model=List[CouponOut])
def list_coupons(user: User = Depends(owner_only), db: Session = Depends(get_db)):
    return coupon_service.list_coupons(db)


@router.post("/", response_model=CouponOut, status_code=201)
def create_coupon(data: CouponCreate, user: User = Depends(owner_only), db: Session = Depends(get_db)):
    try:
        discount_type = DiscountType(data.discount_type.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown discount type: {data.discount_type}")
    if data.user_id is not None and not db.get(User, data.user_id):
        raise HTTPException(status_code=404, detail="User not found")

    with atomic(db):
        coupon = coupon_service.create_coupon(
            db,
            code=data.code,
            discount_value=data.discount_value,
            discount_type=discount_type,
            min_cart_value=data.min_cart_value,
            max_uses=data.max_uses,
            user_id=data.user_id,
            valid_from=data.valid_from,
            valid_until=data.valid_until,
        )
    db.refresh(coupon)
    return coupon


@router.delete("/expired")
def delete_expired_coupons(user: User = Depends(owner_only), db: Session = Depends(get_db)):
    with atomic(db):
        removed = coupon_service.delete_expired_coupons(db)
    return {"deleted": removed}


@router.post("/{coupon_id}/assignments", response_model=CustomerCouponOut, status_code=201)
def assign_coupon(coupon_id: int, data: CouponAssign, user: User = Depends(owner_only), db: Session = Depends(get_db)):
    customer = db.get(User, data.customer_id)
    if not customer or customer.role != UserRole.CUSTOMER.value:
        raise HTTPException(status_code=404, detail="Customer not found")
    if db.get(Coupon, coupon_id) is None:
        raise HTTPException(status_code=404, detail="Coupon not found")

    with atomic(db):
        assignment = coupon_service.assign_to_customer(db, coupon_id, customer.id, data.uses)
    return CustomerCouponOut.from_assignment(assignment)


@router.post("/{coupon_id}/deactivate", response_model=CouponOut)
def deactivate_coupon(coupon_id: int, user: User = Depends(owner_only), db: Session = Depends(get_db)):
    with atomic(db):
        found = coupon_service.deactivate_coupon(db, coupon_id)
    if not found:
        raise HTTPException(status_code=404, detail="Coupon not found")
    db.expire_all()
    return db.get(Coupon, coupon_id)


@router.delete("/{coupon_id}", status_code=204)
def delete_coupon(coupon_id: int, user: User = Depends(owner_only), db: Session = Depends(get_db)):
    with atomic(db):
        found = coupon_service.delete_coupon(db, coupon_id)
    if not found:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return Response(status_code=204)
