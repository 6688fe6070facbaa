from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.access import get_current_user, require_role
from core.db import get_db, atomic
from models.user import User, UserRole
from schemas.settings import MinOrderAmount
from services.system_settings import get_global_min_order_amount, set_global_min_order_amount

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/min-order-amount", response_model=MinOrderAmount)
def read_min_order_amount(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return MinOrderAmount(amount=float(get_global_min_order_amount(db)))


@router.put("/min-order-amount", response_model=MinOrderAmount)
def update_min_order_amount(
    data: MinOrderAmount,
    user: User = Depends(require_role(UserRole.OWNER)),
    db: Session = Depends(get_db),
):
    with atomic(db):
        amount = set_global_min_order_amount(db, data.amount)
    return MinOrderAmount(amount=float(amount))
