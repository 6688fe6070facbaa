from pydantic import BaseModel
from typing import Optional


class ProductCreate(BaseModel):
    name: str
    product_type: str = "vegetable"
    unit_type: str = "kg"
    price: float
    stock: float = 0
    threshold: float = 5.0
    description: Optional[str] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    product_type: Optional[str] = None
    unit_type: Optional[str] = None
    price: Optional[float] = None
    stock: Optional[float] = None
    threshold: Optional[float] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class ProductOut(BaseModel):
    id: int
    name: str
    product_type: str
    unit_type: str
    price: float
    display_price: float
    stock: float
    threshold: float
    description: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True
