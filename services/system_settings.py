from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from core.config import settings
from models.system_setting import SystemSetting

logger = structlog.get_logger(__name__)

GLOBAL_MIN_ORDER_AMOUNT = "GLOBAL_MIN_ORDER_AMOUNT"


def get_value(db: Session, key: str) -> Optional[str]:
    setting = db.get(SystemSetting, key)
    return setting.value if setting else None


def set_value(db: Session, key: str, value: str, description: str | None = None) -> SystemSetting:
    setting = db.get(SystemSetting, key)
    if setting is None:
        setting = SystemSetting(key=key, value=value, description=description)
        db.add(setting)
    else:
        setting.value = value
        if description is not None:
            setting.description = description
    db.flush()
    return setting


def get_global_min_order_amount(db: Session) -> Decimal:
    """Minimum cart subtotal required for checkout."""
    raw = get_value(db, GLOBAL_MIN_ORDER_AMOUNT)
    if raw is None:
        return settings.DEFAULT_MIN_ORDER_AMOUNT
    try:
        return Decimal(raw)
    except InvalidOperation:
        logger.warning("invalid_setting_value", key=GLOBAL_MIN_ORDER_AMOUNT, value=raw)
        return settings.DEFAULT_MIN_ORDER_AMOUNT


def set_global_min_order_amount(db: Session, amount) -> Decimal:
    amount = Decimal(str(amount))
    if amount < 0:
        raise ValueError("Minimum order amount cannot be negative")
    set_value(db, GLOBAL_MIN_ORDER_AMOUNT, str(amount), "Minimum cart amount required for checkout")
    logger.info("min_order_amount_updated", amount=str(amount))
    return amount
