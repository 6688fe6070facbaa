"""Per-customer shopping carts.

A ``ShoppingCart`` is a plain in-memory object owned by one customer
session and passed explicitly to whatever needs it. Between HTTP requests the
cart lives in Redis as product ids and amounts; prices are taken from the
live products each time it is loaded.
"""
import json
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

import redis
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.config import settings
from models.order_item import OrderItem
from models.product import Product
from services.pricing import quantize_money

logger = structlog.get_logger(__name__)

redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

CART_PREFIX = "cart:"

# Amounts are stored with two decimals on order lines
AMOUNT_STEP = Decimal("0.01")


def _dec(value) -> Decimal:
    value = value if isinstance(value, Decimal) else Decimal(str(value))
    return value.quantize(AMOUNT_STEP, rounding=ROUND_HALF_UP)


class CartItem:
    def __init__(self, product: Product, amount):
        self.product = product
        self.amount = _dec(amount)
        self.unit_price = product.display_price

    @property
    def product_id(self) -> int:
        return self.product.id

    @property
    def product_name(self) -> str:
        return self.product.name

    @property
    def total_price(self) -> Decimal:
        return self.amount * self.unit_price

    @property
    def is_available(self) -> bool:
        return self.product.is_amount_available(self.amount)

    def add_amount(self, amount) -> None:
        self.amount += _dec(amount)

    def update_price(self) -> None:
        self.unit_price = self.product.display_price

    def to_order_item(self) -> OrderItem:
        """Freeze this line into an order line with today's name and price."""
        return OrderItem(
            product_id=self.product_id,
            product_name=self.product_name,
            amount=self.amount,
            unit_price=self.unit_price,
            total_price=quantize_money(self.total_price),
        )

    def __repr__(self) -> str:
        return f"CartItem(product={self.product_name!r}, amount={self.amount}, unit_price={self.unit_price})"


class ShoppingCart:
    def __init__(self, customer_id: int):
        self.customer_id = customer_id
        self._items: List[CartItem] = []
        self.coupon_code: Optional[str] = None

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    def get_item(self, product_id: int) -> Optional[CartItem]:
        return next((item for item in self._items if item.product_id == product_id), None)

    def add_item(self, product: Product, amount) -> CartItem:
        amount = _dec(amount)
        if amount <= 0:
            raise ValueError("Amount must be greater than zero")
        existing = self.get_item(product.id)
        if existing:
            existing.add_amount(amount)
            existing.update_price()
            return existing
        item = CartItem(product, amount)
        self._items.append(item)
        return item

    def remove_item(self, product_id: int) -> None:
        self._items = [item for item in self._items if item.product_id != product_id]

    def update_item_amount(self, product_id: int, amount) -> None:
        amount = _dec(amount)
        if amount <= 0:
            self.remove_item(product_id)
            return
        item = self.get_item(product_id)
        if item is None:
            raise KeyError(product_id)
        item.amount = amount

    def clear(self) -> None:
        self._items.clear()
        self.coupon_code = None

    @property
    def subtotal(self) -> Decimal:
        return sum((item.total_price for item in self._items), Decimal("0"))

    @property
    def item_count(self) -> int:
        return len(self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    def unavailable_items(self) -> List[CartItem]:
        return [item for item in self._items if not item.is_available]

    def to_dict(self) -> dict:
        return {
            "items": [{"product_id": item.product_id, "amount": str(item.amount)} for item in self._items],
            "coupon_code": self.coupon_code,
        }


def _key(customer_id: int) -> str:
    return f"{CART_PREFIX}{customer_id}"


def load_cart(db: Session, customer_id: int) -> ShoppingCart:
    """Rebuild the customer's cart against live products.

    Lines whose product has since been removed or deactivated are dropped.
    """
    cart = ShoppingCart(customer_id)
    raw = redis_client.get(_key(customer_id))
    if not raw:
        return cart

    data = json.loads(raw)
    lines = data.get("items", [])
    product_ids = [line["product_id"] for line in lines]
    products = {
        p.id: p
        for p in db.execute(
            select(Product).where(Product.id.in_(product_ids), Product.is_active.is_(True))
        ).scalars()
    }
    for line in lines:
        product = products.get(line["product_id"])
        if product is None:
            logger.info("cart_line_dropped", customer_id=customer_id, product_id=line["product_id"])
            continue
        cart.add_item(product, line["amount"])
    cart.coupon_code = data.get("coupon_code")
    return cart


def save_cart(cart: ShoppingCart) -> None:
    redis_client.setex(_key(cart.customer_id), settings.CART_TTL_SECONDS, json.dumps(cart.to_dict()))


def discard_cart(customer_id: int) -> None:
    redis_client.delete(_key(customer_id))
