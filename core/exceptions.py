"""Exception hierarchy for the order engine.

Expected contention outcomes (a lost carrier race, stock taken by another
checkout) are not exceptions; they come back as ``False`` or as a
``CheckoutResult`` status. The classes below cover rejected input, missing
rows, forbidden actions and store failures.
"""


class GrocerError(Exception):
    """Base exception for all order engine errors."""


class CheckoutValidationError(GrocerError):
    """Cart or delivery details were rejected before anything was written.

    ``str(exc)`` is a user-facing message.
    """


class CouponError(GrocerError):
    """Coupon could not be created, found or applied."""

    def __init__(self, message: str, code: str | None = None):
        self.code = code
        super().__init__(message)


class OrderNotFoundError(GrocerError):
    """No order exists with the given id."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class OrderAccessError(GrocerError):
    """The acting user may not perform this action on the order."""

    def __init__(self, order_id: int, message: str | None = None):
        self.order_id = order_id
        super().__init__(message or f"Not allowed to act on order {order_id}")


class PersistenceError(GrocerError):
    """The database failed mid-operation; the transaction was rolled back."""


class RatingError(GrocerError):
    """A carrier rating could not be recorded for this order."""
