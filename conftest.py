import os
from datetime import timedelta
from decimal import Decimal

os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aromasouq import config
from aromasouq.database import get_db
from aromasouq.main import app
from aromasouq.models import registry
from aromasouq.models.catalog import Cart, CartItem, Product, ProductVariant
from aromasouq.models.coupon import Coupon, DiscountType
from aromasouq.models.user import Address, User, Vendor, VendorStatus
from aromasouq.utils.clock import utcnow

# In-memory SQLite by default; point TEST_DATABASE_URL at Postgres to run against a real server
if config.TEST_DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        config.TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_engine(config.TEST_DATABASE_URL, pool_pre_ping=True)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Override the app's DB dependency to use the test engine/session
def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def setup_database():
    """Fresh schema for each test."""
    registry.drop_all(bind=engine)
    registry.create_all(bind=engine)
    yield
    registry.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(email=None):
        counter["n"] += 1
        user = User(email=email or f"user{counter['n']}@example.com", first_name="Test", last_name="User")
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_vendor(db, make_user):
    def _make_vendor(status=VendorStatus.APPROVED, user=None):
        user = user or make_user()
        vendor = Vendor(user_id=user.id, business_name=f"Oud House {user.id}", status=status)
        db.add(vendor)
        db.commit()
        return vendor

    return _make_vendor


@pytest.fixture
def make_address(db):
    def _make_address(user):
        address = Address(user_id=user.id, full_name="Test User", line1="1 Souq Street", city="Dubai")
        db.add(address)
        db.commit()
        return address

    return _make_address


@pytest.fixture
def make_product(db):
    def _make_product(price="100.00", stock=10, is_active=True, name="Amber Oud", variants=()):
        product = Product(name=name, price=Decimal(price), stock=stock, sales_count=0, is_active=is_active)
        db.add(product)
        db.flush()
        for variant_name, variant_price in variants:
            db.add(ProductVariant(product_id=product.id, name=variant_name, price=Decimal(variant_price)))
        db.commit()
        return product

    return _make_product


@pytest.fixture
def add_to_cart(db):
    def _add_to_cart(user, product, quantity=1, variant_id=None):
        cart = db.query(Cart).filter(Cart.user_id == user.id).first()
        if cart is None:
            cart = Cart(user_id=user.id)
            db.add(cart)
            db.flush()
        db.add(CartItem(cart_id=cart.id, product_id=product.id, variant_id=variant_id, quantity=quantity))
        db.commit()
        return cart

    return _add_to_cart


@pytest.fixture
def make_coupon(db, make_vendor):
    def _make_coupon(code="SAVE10", discount_type=DiscountType.PERCENTAGE, discount_value="10",
                     min_order_amount=None, max_discount=None, usage_limit=None, usage_count=0,
                     is_active=True, starts_in=timedelta(days=-1), ends_in=timedelta(days=30), vendor=None):
        vendor = vendor or make_vendor()
        now = utcnow()
        coupon = Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(discount_value),
            min_order_amount=Decimal(min_order_amount) if min_order_amount is not None else None,
            max_discount=Decimal(max_discount) if max_discount is not None else None,
            usage_limit=usage_limit,
            usage_count=usage_count,
            is_active=is_active,
            start_date=now + starts_in,
            end_date=now + ends_in,
            vendor_id=vendor.id,
        )
        db.add(coupon)
        db.commit()
        return coupon

    return _make_coupon
