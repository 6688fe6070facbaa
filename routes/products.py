from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from core.access import require_role
from core.db import get_db, atomic
from models.product import Product
from models.user import User, UserRole
from schemas.product import ProductCreate, ProductUpdate, ProductOut

router = APIRouter(prefix="/products", tags=["products"])

DECIMAL_FIELDS = {"price", "stock", "threshold"}


@router.get("/", response_model=List[ProductOut])
def list_products(db: Session = Depends(get_db)):
    return db.query(Product).filter(Product.is_active.is_(True)).order_by(Product.name).all()


@router.post("/", response_model=ProductOut, status_code=201)
def create_product(
    data: ProductCreate,
    user: User = Depends(require_role(UserRole.OWNER)),
    db: Session = Depends(get_db),
):
    if data.price <= 0:
        raise HTTPException(status_code=400, detail="Price must be greater than zero")
    if data.stock < 0 or data.threshold < 0:
        raise HTTPException(status_code=400, detail="Stock and threshold cannot be negative")

    product = Product(
        name=data.name.strip(),
        product_type=data.product_type,
        unit_type=data.unit_type,
        description=data.description,
        price=Decimal(str(data.price)),
        stock=Decimal(str(data.stock)),
        threshold=Decimal(str(data.threshold)),
        is_active=True,
    )
    with atomic(db):
        db.add(product)
    db.refresh(product)
    return product


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int,
    data: ProductUpdate,
    user: User = Depends(require_role(UserRole.OWNER)),
    db: Session = Depends(get_db),
):
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    updates = data.model_dump(exclude_unset=True)
    if updates.get("price") is not None and updates["price"] <= 0:
        raise HTTPException(status_code=400, detail="Price must be greater than zero")
    for field in ("stock", "threshold"):
        if updates.get(field) is not None and updates[field] < 0:
            raise HTTPException(status_code=400, detail=f"{field.capitalize()} cannot be negative")

    with atomic(db):
        for field, value in updates.items():
            if value is None:
                continue
            setattr(product, field, Decimal(str(value)) if field in DECIMAL_FIELDS else value)
    db.refresh(product)
    return product
