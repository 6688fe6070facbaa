from datetime import datetime
from decimal import Decimal

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.db import Base, get_db
from models.coupon import Coupon, DiscountType
from models.order import Order, OrderStatus
from models.order_item import OrderItem
from models.product import Product
from models.user import User, UserRole
from security import jwt as jwt_utils
from services import cart as cart_service
from services import email as email_service

# Fixed clock for service-level tests: a Tuesday morning
NOW = datetime(2026, 3, 10, 10, 0)


@pytest.fixture()
def db():
    """Fresh in-memory database per test, shared with the app through get_db."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()

    def _get_db():
        try:
            yield session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db
    try:
        yield session
    finally:
        session.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    server = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(cart_service, "redis_client", server)
    return server


@pytest.fixture(autouse=True)
def mock_email_send(monkeypatch):
    sent = []

    def _fake_send(to_email: str, subject: str, body: str) -> None:
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture()
def client(db):
    with TestClient(app) as c:
        yield c


def _make_user(db, username: str, role: UserRole, **kwargs) -> User:
    user = User(
        username=username,
        full_name=kwargs.pop("full_name", username.title()),
        email=kwargs.pop("email", f"{username}@example.com"),
        address=kwargs.pop("address", "12 Market Street"),
        role=role.value,
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def customer(db):
    return _make_user(db, "alice", UserRole.CUSTOMER)


@pytest.fixture
def other_customer(db):
    return _make_user(db, "bob", UserRole.CUSTOMER)


@pytest.fixture
def carrier(db):
    return _make_user(db, "carl", UserRole.CARRIER)


@pytest.fixture
def other_carrier(db):
    return _make_user(db, "cora", UserRole.CARRIER)


@pytest.fixture
def owner(db):
    return _make_user(db, "olive", UserRole.OWNER)


@pytest.fixture
def make_product(db):
    def _make(name="Tomato", price="10.00", stock="100", threshold="5", **kwargs) -> Product:
        product = Product(
            name=name,
            price=Decimal(price),
            stock=Decimal(stock),
            threshold=Decimal(threshold),
            **kwargs,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def tomato(make_product):
    return make_product("Tomato", price="10.00", stock="100")


@pytest.fixture
def apple(make_product):
    return make_product("Apple", price="4.00", stock="3", threshold="1", product_type="fruit")


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE5", value="5", discount_type=DiscountType.PERCENT, **kwargs) -> Coupon:
        coupon = Coupon(
            code=code,
            discount_type=discount_type.value,
            discount_value=Decimal(value),
            min_cart_value=Decimal(kwargs.pop("min_cart_value", "0")),
            max_uses=kwargs.pop("max_uses", 10),
            current_uses=kwargs.pop("current_uses", 0),
            valid_from=kwargs.pop("valid_from", datetime(2026, 1, 1)),
            **kwargs,
        )
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon

    return _make


@pytest.fixture
def make_order(db):
    """Insert an order directly, with its items' stock already taken."""

    def _make(customer, lines, status=OrderStatus.PENDING, order_time=NOW, carrier=None) -> Order:
        items = []
        subtotal = Decimal("0")
        for product, amount in lines:
            amount = Decimal(str(amount))
            product.stock = product.stock - amount
            total = product.price * amount
            subtotal += total
            items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    amount=amount,
                    unit_price=product.price,
                    total_price=total,
                )
            )
        vat = (subtotal * Decimal("0.18")).quantize(Decimal("0.01"))
        order = Order(
            customer_id=customer.id,
            carrier_id=carrier.id if carrier else None,
            order_time=order_time,
            requested_delivery_time=datetime(2026, 3, 10, 15, 0),
            status=status.value,
            subtotal=subtotal,
            discount_amount=Decimal("0"),
            vat_amount=vat,
            total_cost=subtotal + vat,
            items=items,
        )
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    return _make


def auth_headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(user.id))}"}


@pytest.fixture
def customer_headers(customer):
    return auth_headers_for(customer)


@pytest.fixture
def carrier_headers(carrier):
    return auth_headers_for(carrier)


@pytest.fixture
def owner_headers(owner):
    return auth_headers_for(owner)


@pytest.fixture
def headers_for():
    return auth_headers_for


@pytest.fixture
def now():
    return NOW
