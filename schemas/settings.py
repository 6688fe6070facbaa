from pydantic import BaseModel, Field


class MinOrderAmount(BaseModel):
    amount: float = Field(ge=0)
