# Import models so that SQLAlchemy metadata includes them on app startup
from .user import User  # noqa: F401
from .product import Product  # noqa: F401
from .order import Order  # noqa: F401
from .order_item import OrderItem  # noqa: F401
from .coupon import Coupon  # noqa: F401
from .system_setting import SystemSetting  # noqa: F401
from .customer_coupon import CustomerCoupon  # noqa: F401
from .carrier_rating import CarrierRating  # noqa: F401
