from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from core.access import get_current_user
from core.db import get_db
from models.user import User, UserRole
from schemas.rating import CarrierRatings, RatingOut
from services import ratings as rating_service

router = APIRouter(prefix="/carriers", tags=["carriers"])


@router.get("/{carrier_id}/ratings", response_model=CarrierRatings)
def carrier_ratings(carrier_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    carrier = db.get(User, carrier_id)
    if not carrier or carrier.role != UserRole.CARRIER.value:
        raise HTTPException(status_code=404, detail="Carrier not found")
    ratings = rating_service.list_carrier_ratings(db, carrier_id)
    return CarrierRatings(
        carrier_id=carrier_id,
        average_rating=rating_service.average_rating(db, carrier_id),
        rating_count=len(ratings),
        ratings=[RatingOut.model_validate(r) for r in ratings],
    )
