from datetime import date
from decimal import Decimal
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from core.access import require_role
from core.db import get_db
from models.product import Product
from models.user import User, UserRole
from schemas.cart import CartCouponIn, CartItemIn, CartItemOut, CartItemUpdate, CartOut, CartSummary, DeliverySlots
from schemas.coupon import CustomerCouponOut
from services import coupons as coupon_service
from services.cart import ShoppingCart, discard_cart, load_cart, save_cart
from services.checkout import available_slots, preview
from services.stock import check_availability
from services.system_settings import get_global_min_order_amount

router = APIRouter(prefix="/cart", tags=["cart"])

customer_only = require_role(UserRole.CUSTOMER)


def _cart_out(cart: ShoppingCart) -> CartOut:
    return CartOut(
        items=[
            CartItemOut(
                product_id=item.product_id,
                product_name=item.product_name,
                amount=float(item.amount),
                unit_price=float(item.unit_price),
                total_price=float(item.total_price),
                is_available=item.is_available,
            )
            for item in cart.items
        ],
        coupon_code=cart.coupon_code,
        subtotal=float(cart.subtotal),
        item_count=cart.item_count,
    )


@router.get("/", response_model=CartOut)
def get_cart(user: User = Depends(customer_only), db: Session = Depends(get_db)):
    return _cart_out(load_cart(db, user.id))


@router.post("/items", response_model=CartOut)
def add_item(data: CartItemIn, user: User = Depends(customer_only), db: Session = Depends(get_db)):
    product = db.get(Product, data.product_id)
    if not product or not product.is_active:
        raise HTTPException(status_code=404, detail="Product not found")

    cart = load_cart(db, user.id)
    existing = cart.get_item(product.id)
    wanted = Decimal(str(data.amount)) + (existing.amount if existing else Decimal("0"))
    if not product.is_amount_available(wanted):
        raise HTTPException(status_code=400, detail=f"Not enough {product.name} in stock")

    cart.add_item(product, data.amount)
    save_cart(cart)
    return _cart_out(cart)


@router.patch("/items/{product_id}", response_model=CartOut)
def update_item(product_id: int, data: CartItemUpdate, user: User = Depends(customer_only), db: Session = Depends(get_db)):
    cart = load_cart(db, user.id)
    item = cart.get_item(product_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Product is not in the cart")
    if data.amount > 0 and not item.product.is_amount_available(data.amount):
        raise HTTPException(status_code=400, detail=f"Not enough {item.product_name} in stock")

    cart.update_item_amount(product_id, data.amount)
    save_cart(cart)
    return _cart_out(cart)


@router.delete("/items/{product_id}", response_model=CartOut)
def remove_item(product_id: int, user: User = Depends(customer_only), db: Session = Depends(get_db)):
    cart = load_cart(db, user.id)
    cart.remove_item(product_id)
    save_cart(cart)
    return _cart_out(cart)


@router.delete("/", status_code=204)
def clear_cart(user: User = Depends(customer_only)):
    discard_cart(user.id)
    return Response(status_code=204)


@router.post("/coupon", response_model=CartOut)
def apply_coupon(data: CartCouponIn, user: User = Depends(customer_only), db: Session = Depends(get_db)):
    cart = load_cart(db, user.id)
    coupon = coupon_service.find_by_code(db, data.code)
    if coupon is None:
        raise HTTPException(status_code=404, detail="Coupon not found")
    if not coupon_service.applies_for_customer(db, coupon, cart.subtotal, user.id):
        raise HTTPException(status_code=400, detail=f"Coupon {coupon.code} cannot be applied to this cart")

    cart.coupon_code = coupon.code
    save_cart(cart)
    return _cart_out(cart)


@router.delete("/coupon", response_model=CartOut)
def remove_coupon(user: User = Depends(customer_only), db: Session = Depends(get_db)):
    cart = load_cart(db, user.id)
    cart.coupon_code = None
    save_cart(cart)
    return _cart_out(cart)


@router.get("/summary", response_model=CartSummary)
def cart_summary(user: User = Depends(customer_only), db: Session = Depends(get_db)):
    cart = load_cart(db, user.id)
    price = preview(db, cart, user).rounded()
    minimum = get_global_min_order_amount(db)
    return CartSummary(
        subtotal=float(price.subtotal),
        loyalty_discount=float(price.loyalty_discount),
        coupon_discount=float(price.coupon_discount),
        discount=float(price.discount),
        vat=float(price.vat),
        total=float(price.total),
        coupon_code=cart.coupon_code if price.coupon_discount > 0 else None,
        min_order_amount=float(minimum),
        meets_minimum=cart.subtotal >= minimum,
        unavailable_product_ids=check_availability(cart),
    )


@router.get("/slots", response_model=DeliverySlots)
def delivery_slots(delivery_date: date, user: User = Depends(customer_only)):
    return DeliverySlots(delivery_date=delivery_date, slots=available_slots(delivery_date))


@router.get("/coupons", response_model=List[CustomerCouponOut])
def my_coupons(user: User = Depends(customer_only), db: Session = Depends(get_db)):
    return [CustomerCouponOut.from_assignment(a) for a in coupon_service.list_customer_coupons(db, user.id)]
