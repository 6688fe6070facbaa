import threading
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from core.db import Base
from core.exceptions import CheckoutValidationError, PersistenceError
from models.coupon import Coupon, DiscountType
from models.order import Order, OrderStatus
from models.order_item import OrderItem
from models.product import Product
from models.user import User, UserRole
from services import checkout as checkout_service
from services import coupons as coupon_service
from services.cart import ShoppingCart
from services.checkout import CheckoutStatus, available_slots, checkout, validate_delivery
from services.system_settings import set_global_min_order_amount

AFTERNOON = "15:00 - 18:00"


def cart_with(customer, *lines, coupon_code=None):
    cart = ShoppingCart(customer.id)
    for product, amount in lines:
        cart.add_item(product, amount)
    cart.coupon_code = coupon_code
    return cart


def order_count(db):
    return db.query(Order).count()


class TestDeliveryValidation:
    """Test cases for delivery date and slot rules"""

    def test_valid_same_day_slot(self, now):
        """Test a later slot today is accepted"""
        assert validate_delivery(now.date(), AFTERNOON, now) == datetime(2026, 3, 10, 15, 0)

    @pytest.mark.parametrize(
        "delivery_date, slot, message",
        [
            (None, AFTERNOON, "Select a delivery date!"),
            (date(2026, 3, 10), None, "Select a delivery time!"),
            (date(2026, 3, 10), "07:00 - 08:00", "Unknown delivery time slot"),
            (date(2026, 3, 9), AFTERNOON, "cannot be in the past"),
            (date(2026, 3, 10), "09:00 - 12:00", "no longer available"),
            (date(2026, 3, 12), "15:00 - 18:00", "at most 48 hours"),
            (date(2026, 4, 20), AFTERNOON, "at most 30 days"),
        ],
    )
    def test_rejected_delivery(self, now, delivery_date, slot, message):
        """Test invalid delivery requests raise with a readable message"""
        with pytest.raises(CheckoutValidationError) as exc_info:
            validate_delivery(delivery_date, slot, now)
        assert message in str(exc_info.value)

    def test_slot_cutoff(self, now):
        """Test a slot closes thirty minutes before it starts"""
        assert "12:00 - 15:00" in available_slots(now.date(), now.replace(hour=11, minute=30))
        assert "12:00 - 15:00" not in available_slots(now.date(), now.replace(hour=11, minute=31))

    def test_available_slots_window(self, now):
        """Test slots beyond 48 hours are not offered"""
        assert available_slots(now.date(), now) == ["12:00 - 15:00", "15:00 - 18:00", "18:00 - 21:00"]
        assert available_slots(date(2026, 3, 12), now) == ["09:00 - 12:00"]
        assert available_slots(date(2026, 3, 13), now) == []


class TestCheckout:
    """Test cases for placing orders"""

    def test_successful_checkout(self, db, customer, tomato, apple, now, mock_email_send):
        """Test the order, stock, counters and cart after a checkout"""
        cart = cart_with(customer, (tomato, "5.5"), (apple, 2))

        result = checkout(db, cart, customer, now.date(), AFTERNOON, notes="Ring twice", now=now)

        assert result.ok
        order = result.order
        assert order.status == OrderStatus.PENDING.value
        assert order.order_time == now
        assert order.requested_delivery_time == datetime(2026, 3, 10, 15, 0)
        assert order.subtotal == Decimal("63.00")
        assert order.discount_amount == Decimal("0")
        assert order.vat_amount == Decimal("11.34")
        assert order.total_cost == order.subtotal - order.discount_amount + order.vat_amount
        assert order.notes == "Ring twice"
        assert {(i.product_name, i.amount) for i in order.items} == {("Tomato", Decimal("5.5")), ("Apple", Decimal("2"))}

        db.refresh(tomato)
        db.refresh(apple)
        db.refresh(customer)
        assert tomato.stock == Decimal("94.5")
        assert apple.stock == Decimal("1")
        assert customer.total_orders == 1
        assert cart.is_empty
        assert b"INVOICE #" in order.invoice
        assert mock_email_send[0]["to"] == customer.email
        assert f"#{order.id}" in mock_email_send[0]["body"]

    def test_loyalty_and_coupon_scenario(self, db, customer, make_product, make_coupon, now):
        """Test 100 with 10% loyalty and a 5% coupon is stored as 15 / 15.3 / 100.3"""
        customer.total_orders = 10
        db.commit()
        product = make_product("Basket", price="100.00", stock="10")
        coupon = make_coupon("SAVE5", "5", min_cart_value="50", max_uses=1)
        cart = cart_with(customer, (product, 1), coupon_code="save5")

        result = checkout(db, cart, customer, now.date(), AFTERNOON, now=now)

        assert result.ok
        assert result.order.discount_amount == Decimal("15.00")
        assert result.order.vat_amount == Decimal("15.30")
        assert result.order.total_cost == Decimal("100.30")
        assert result.order.coupon_code == "SAVE5"
        db.refresh(coupon)
        assert coupon.current_uses == 1

    def test_snapshot_survives_catalog_change(self, db, customer, tomato, now):
        """Test order lines keep the price paid after the catalog changes"""
        result = checkout(db, cart_with(customer, (tomato, 6)), customer, now.date(), AFTERNOON, now=now)
        tomato.price = Decimal("99.00")
        tomato.name = "Heirloom Tomato"
        db.commit()

        item = db.query(OrderItem).filter(OrderItem.order_id == result.order.id).one()
        db.refresh(item)
        assert item.product_name == "Tomato"
        assert item.unit_price == Decimal("10.00")

    def test_out_of_stock_rolls_back(self, db, customer, tomato, apple, now):
        """Test losing the stock race leaves no order and no partial decrement"""
        cart = cart_with(customer, (tomato, 6), (apple, 2))
        apple.stock = Decimal("1")
        db.commit()

        result = checkout(db, cart, customer, now.date(), AFTERNOON, now=now)

        assert result.status == CheckoutStatus.OUT_OF_STOCK
        assert result.product_id == apple.id
        assert "Apple" in result.message
        assert order_count(db) == 0
        db.refresh(tomato)
        db.refresh(customer)
        assert tomato.stock == Decimal("100")
        assert customer.total_orders == 0
        assert not cart.is_empty

    def test_coupon_used_up_rolls_back(self, db, customer, tomato, make_coupon, now):
        """Test a coupon exhausted by someone else cancels the whole checkout"""
        coupon = make_coupon("LAST", "10", max_uses=1)
        cart = cart_with(customer, (tomato, 6), coupon_code="LAST")

        with patch.object(checkout_service.coupon_service, "increment_uses", return_value=False):
            result = checkout(db, cart, customer, now.date(), AFTERNOON, now=now)

        assert result.status == CheckoutStatus.COUPON_UNAVAILABLE
        assert order_count(db) == 0
        db.refresh(tomato)
        db.refresh(coupon)
        assert tomato.stock == Decimal("100")
        assert coupon.current_uses == 0

    def test_database_failure_rolls_back(self, db, customer, tomato, apple, now, mock_email_send):
        """Test a database error mid-checkout undoes everything and raises PersistenceError"""
        cart = cart_with(customer, (tomato, 6), (apple, 2))
        failure = OperationalError("UPDATE users", {}, Exception("database is locked"))

        with patch.object(checkout_service, "increment_customer_order_count", side_effect=failure):
            with pytest.raises(PersistenceError):
                checkout(db, cart, customer, now.date(), AFTERNOON, now=now)

        assert order_count(db) == 0
        assert db.query(OrderItem).count() == 0
        db.refresh(tomato)
        db.refresh(apple)
        db.refresh(customer)
        assert tomato.stock == Decimal("100")
        assert apple.stock == Decimal("3")
        assert customer.total_orders == 0
        assert not cart.is_empty
        assert mock_email_send == []

    def test_assigned_coupon_spends_personal_use(self, db, customer, tomato, make_coupon, now):
        """Test checkout with an assigned coupon uses one personal and one global use"""
        coupon = make_coupon("GIFT", "10", max_uses=5)
        coupon_service.assign_to_customer(db, coupon.id, customer.id, uses=2)
        db.commit()

        result = checkout(db, cart_with(customer, (tomato, 6), coupon_code="GIFT"), customer, now.date(), AFTERNOON, now=now)

        assert result.ok
        assert result.order.discount_amount == Decimal("6.00")
        db.refresh(coupon)
        assert coupon.current_uses == 1
        assert coupon_service.get_customer_coupon(db, customer.id, coupon.id).uses_remaining == 1

    def test_spent_assignment_rolls_back(self, db, customer, tomato, make_coupon, now):
        """Test a personal allotment spent elsewhere cancels the whole checkout"""
        coupon = make_coupon("GIFT", "10", max_uses=5)
        coupon_service.assign_to_customer(db, coupon.id, customer.id, uses=1)
        db.commit()
        cart = cart_with(customer, (tomato, 6), coupon_code="GIFT")

        with patch.object(checkout_service.coupon_service, "use_customer_coupon", return_value=False):
            result = checkout(db, cart, customer, now.date(), AFTERNOON, now=now)

        assert result.status == CheckoutStatus.COUPON_UNAVAILABLE
        assert order_count(db) == 0
        db.refresh(tomato)
        db.refresh(coupon)
        assert tomato.stock == Decimal("100")
        assert coupon.current_uses == 0
        assert coupon_service.get_customer_coupon(db, customer.id, coupon.id).uses_remaining == 1

    def test_exhausted_coupon_rejected_upfront(self, db, customer, tomato, make_coupon, now):
        """Test a coupon that is already used up fails validation"""
        make_coupon("USED", "10", max_uses=1, current_uses=1)
        cart = cart_with(customer, (tomato, 6), coupon_code="USED")

        with pytest.raises(CheckoutValidationError):
            checkout(db, cart, customer, now.date(), AFTERNOON, now=now)
        assert order_count(db) == 0

    def test_empty_cart(self, db, customer, now):
        """Test an empty cart cannot be checked out"""
        with pytest.raises(CheckoutValidationError, match="Your cart is empty!"):
            checkout(db, ShoppingCart(customer.id), customer, now.date(), AFTERNOON, now=now)

    def test_below_minimum(self, db, customer, tomato, now):
        """Test the configured minimum order amount is enforced"""
        set_global_min_order_amount(db, 80)
        db.commit()
        cart = cart_with(customer, (tomato, 6))

        with pytest.raises(CheckoutValidationError, match="Minimum cart amount must be 80.00"):
            checkout(db, cart, customer, now.date(), AFTERNOON, now=now)
        db.refresh(tomato)
        assert tomato.stock == Decimal("100")

    def test_invalid_delivery_writes_nothing(self, db, customer, tomato, now):
        """Test delivery validation happens before any write"""
        with pytest.raises(CheckoutValidationError):
            checkout(db, cart_with(customer, (tomato, 6)), customer, None, AFTERNOON, now=now)
        assert order_count(db) == 0

    def test_invoice_failure_still_places_order(self, db, customer, tomato, now):
        """Test a broken invoice renderer does not block the order"""
        with patch.object(checkout_service, "generate_invoice", side_effect=RuntimeError("template broken")):
            result = checkout(db, cart_with(customer, (tomato, 6)), customer, now.date(), AFTERNOON, now=now)

        assert result.ok
        assert result.order.invoice is None

    def test_email_failure_still_places_order(self, db, customer, tomato, now):
        """Test a failing confirmation email is only logged"""
        with patch.object(checkout_service, "send_templated_email", side_effect=RuntimeError("smtp down")):
            result = checkout(db, cart_with(customer, (tomato, 6)), customer, now.date(), AFTERNOON, now=now)

        assert result.ok
        assert order_count(db) == 1


class TestPreview:
    """Test cases for price previews"""

    def test_preview_ignores_stale_coupon(self, db, customer, tomato, make_coupon, now):
        """Test a coupon that no longer applies is left out of the preview"""
        make_coupon("BIGCART", "10", min_cart_value="500")
        cart = cart_with(customer, (tomato, 6), coupon_code="BIGCART")

        price = checkout_service.preview(db, cart, customer, now)
        assert price.coupon_discount == Decimal("0")
        assert price.total == Decimal("70.80")


@pytest.fixture
def race_session(tmp_path):
    """Sessions on a file-backed database so threads get real connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'checkout_race.sqlite3'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    yield Session
    engine.dispose()


def race_checkouts(Session, customer_ids, product_id, amount, now, coupon_code=None):
    """Run one checkout per customer, all released together; return results by customer."""
    barrier = threading.Barrier(len(customer_ids))
    results = {}
    errors = []

    def place(customer_id):
        try:
            with Session() as session:
                customer = session.get(User, customer_id)
                product = session.get(Product, product_id)
                cart = cart_with(customer, (product, amount), coupon_code=coupon_code)
                barrier.wait()
                results[customer_id] = checkout(session, cart, customer, now.date(), AFTERNOON, now=now)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=place, args=(cid,)) for cid in customer_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    return results


class TestConcurrentCheckout:
    """Test cases for checkouts racing from separate threads"""

    def test_stock_race_single_winner(self, race_session, now):
        """Test two checkouts for 4 of the last 5 units place exactly one order"""
        with race_session() as setup:
            customers = [User(username=f"shopper{i}", role=UserRole.CUSTOMER.value) for i in range(2)]
            product = Product(name="Cherry", price=Decimal("20"), stock=Decimal("5"), threshold=Decimal("1"))
            setup.add_all([product, *customers])
            setup.commit()
            customer_ids = [c.id for c in customers]
            product_id = product.id

        results = race_checkouts(race_session, customer_ids, product_id, 4, now)

        statuses = sorted(r.status.value for r in results.values())
        assert statuses == [CheckoutStatus.OUT_OF_STOCK.value, CheckoutStatus.PLACED.value]
        with race_session() as check:
            assert check.get(Product, product_id).stock == Decimal("1")
            assert check.query(Order).count() == 1
            assert sum(check.get(User, cid).total_orders for cid in customer_ids) == 1

    def test_coupon_race_single_use(self, race_session, now):
        """Test a single-use coupon raced by two checkouts is used exactly once"""
        with race_session() as setup:
            customers = [User(username=f"shopper{i}", role=UserRole.CUSTOMER.value) for i in range(2)]
            product = Product(name="Melon", price=Decimal("10"), stock=Decimal("100"), threshold=Decimal("1"))
            coupon = Coupon(
                code="ONCE",
                discount_type=DiscountType.PERCENT.value,
                discount_value=Decimal("10"),
                min_cart_value=Decimal("0"),
                max_uses=1,
                current_uses=0,
                valid_from=datetime(2026, 1, 1),
            )
            setup.add_all([product, coupon, *customers])
            setup.commit()
            customer_ids = [c.id for c in customers]
            product_id = product.id
            coupon_id = coupon.id

        resolve = checkout_service.resolve_coupon
        both_resolved = threading.Barrier(2)

        def resolve_then_wait(*args, **kwargs):
            # Both checkouts see the coupon with a use left before either writes
            coupon = resolve(*args, **kwargs)
            both_resolved.wait(timeout=30)
            return coupon

        with patch.object(checkout_service, "resolve_coupon", side_effect=resolve_then_wait):
            results = race_checkouts(race_session, customer_ids, product_id, 6, now, coupon_code="ONCE")

        statuses = sorted(r.status.value for r in results.values())
        assert statuses == [CheckoutStatus.COUPON_UNAVAILABLE.value, CheckoutStatus.PLACED.value]
        with race_session() as check:
            assert check.get(Coupon, coupon_id).current_uses == 1
            assert check.get(Product, product_id).stock == Decimal("94")
            orders = check.query(Order).all()
            assert len(orders) == 1
            assert orders[0].coupon_code == "ONCE"
