"""Checkout pricing: subtotal, stacked discounts, VAT and total.

Loyalty and coupon discounts are each taken from the raw subtotal and added
together; neither is applied to an already discounted amount. Everything
here is pure, so carts can be priced for preview as often as needed.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple, Union

from core.config import settings
from models.coupon import Coupon
from services.coupons import calculate_discount

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

Line = Union[Tuple[object, object], object]


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    loyalty_discount: Decimal
    coupon_discount: Decimal
    discount: Decimal
    vat: Decimal
    total: Decimal
    vat_rate: Decimal = settings.VAT_RATE

    def rounded(self) -> "PriceBreakdown":
        """Cent-rounded copy for storage; ``total`` is recomputed from the
        rounded parts so ``total == subtotal - discount + vat`` still holds and
        ``vat`` matches the stored base."""
        subtotal = quantize_money(self.subtotal)
        loyalty = quantize_money(self.loyalty_discount)
        coupon = quantize_money(self.coupon_discount)
        discount = min(loyalty + coupon, subtotal)
        vat = quantize_money((subtotal - discount) * self.vat_rate)
        return PriceBreakdown(
            subtotal=subtotal,
            loyalty_discount=loyalty,
            coupon_discount=coupon,
            discount=discount,
            vat=vat,
            total=subtotal - discount + vat,
            vat_rate=self.vat_rate,
        )


def _line_values(line: Line) -> Tuple[Decimal, Decimal]:
    if isinstance(line, tuple):
        unit_price, amount = line
    else:
        unit_price, amount = line.unit_price, line.amount
    return to_decimal(unit_price), to_decimal(amount)


def calculate_subtotal(lines: Iterable[Line]) -> Decimal:
    subtotal = Decimal("0")
    for line in lines:
        unit_price, amount = _line_values(line)
        subtotal += unit_price * amount
    return subtotal


def calculate_price(
    lines: Iterable[Line],
    loyalty_percent=0,
    coupon: Coupon | None = None,
    vat_rate: Decimal | None = None,
) -> PriceBreakdown:
    """Price a set of lines given as ``(unit_price, amount)`` pairs or objects
    with ``unit_price`` and ``amount`` attributes (cart or order items).

    The coupon is assumed to be applicable already; see
    ``services.coupons.can_apply``.
    """
    rate = settings.VAT_RATE if vat_rate is None else to_decimal(vat_rate)
    subtotal = calculate_subtotal(lines)
    loyalty_discount = subtotal * (to_decimal(loyalty_percent) / HUNDRED)
    coupon_discount = calculate_discount(coupon, subtotal) if coupon is not None else Decimal("0")
    # Stacked discounts can reach past the subtotal; the order never goes below zero
    discount = min(loyalty_discount + coupon_discount, subtotal)
    vat = (subtotal - discount) * rate
    return PriceBreakdown(
        subtotal=subtotal,
        loyalty_discount=loyalty_discount,
        coupon_discount=coupon_discount,
        discount=discount,
        vat=vat,
        total=subtotal - discount + vat,
        vat_rate=rate,
    )
