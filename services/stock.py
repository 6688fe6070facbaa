"""Inventory accounting: conditional decrement and restore.

Both functions issue a single UPDATE and leave committing to the caller, so a
checkout or cancellation can group several of them into one transaction.
"""
from decimal import Decimal
from typing import List

import structlog
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from models.product import Product

logger = structlog.get_logger(__name__)

# Stock is kept to hundredths, the precision of the column and of cart amounts
STOCK_PLACES = 2


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _rounded(expr):
    # SQLite keeps Numeric as REAL; snap each stored value back to cents
    return func.round(expr, STOCK_PLACES)


def reduce_stock(db: Session, product_id: int, amount) -> bool:
    """Take ``amount`` out of stock if at least that much is left.

    The guard lives in the WHERE clause, so two checkouts racing for the last
    units cannot both succeed and stock never goes negative.
    """
    amount = _dec(amount)
    if amount <= 0:
        return False
    remaining = _rounded(Product.stock - amount)
    stmt = (
        update(Product)
        .where(Product.id == product_id, remaining >= 0)
        .values(stock=remaining)
        .execution_options(synchronize_session=False)
    )
    reduced = db.execute(stmt).rowcount == 1
    if not reduced:
        logger.info("stock_reduce_rejected", product_id=product_id, amount=str(amount))
    return reduced


def restore_stock(db: Session, product_id: int, amount) -> bool:
    amount = _dec(amount)
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=_rounded(Product.stock + amount))
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def check_availability(cart) -> List[int]:
    """Product ids in ``cart`` whose loaded stock no longer covers the amount.

    Advisory only: the figures may already be stale when checkout runs.
    """
    return [item.product_id for item in cart.unavailable_items()]
