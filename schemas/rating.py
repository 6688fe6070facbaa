from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional

from models.carrier_rating import MAX_RATING, MIN_RATING


class RatingIn(BaseModel):
    rating: int = Field(ge=MIN_RATING, le=MAX_RATING)
    comment: Optional[str] = Field(default=None, max_length=1000)


class RatingOut(BaseModel):
    id: int
    order_id: int
    carrier_id: int
    customer_id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CarrierRatings(BaseModel):
    carrier_id: int
    average_rating: float
    rating_count: int
    ratings: List[RatingOut]
