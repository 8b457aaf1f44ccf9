# tests/conftest.py
# Shared fixtures: in-memory SQLite database, API client and data factories.
import os

# Must be set before marketplace.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["ENVIRONMENT"] = "test"
os.environ["CASHFREE_WEBHOOK_SECRET"] = "whsec_test"

from decimal import Decimal
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from marketplace.core.cache import ResponseCache, get_cache
from marketplace.core.security import create_access_token
from marketplace.db.base import Base
from marketplace.db.session import SessionLocal, engine
from marketplace.main import app
from marketplace.models import (
    Address,
    Product,
    ProductStatus,
    ProductVariant,
    RoleEnum,
    User,
)
from marketplace.services import orders as order_service

_seq = count(1)


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    app.dependency_overrides[get_cache] = lambda: ResponseCache(None)
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


def stock_of(db, model, row_id) -> int:
    """Reads the committed counter straight from the table."""
    return db.execute(select(model.stock_quantity).where(model.id == row_id)).scalar_one()


def sales_of(db, product_id) -> int:
    return db.execute(select(Product.total_sales).where(Product.id == product_id)).scalar_one()


@pytest.fixture
def make_user(db):
    def _make(role=RoleEnum.buyer, **fields):
        n = next(_seq)
        user = User(
            email=fields.pop("email", f"user{n}@example.com"),
            first_name=fields.pop("first_name", "Test"),
            last_name=fields.pop("last_name", f"User{n}"),
            phone=fields.pop("phone", "9876543210"),
            role=role,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def buyer(make_user):
    return make_user(RoleEnum.buyer)


@pytest.fixture
def seller(make_user):
    return make_user(RoleEnum.seller, company_name="Acme Traders")


@pytest.fixture
def admin(make_user):
    return make_user(RoleEnum.admin)


@pytest.fixture
def make_product(db):
    def _make(seller, price="100.00", stock=10, **fields):
        n = next(_seq)
        product = Product(
            seller_id=seller.id,
            name=fields.pop("name", f"Product {n}"),
            sku=fields.pop("sku", f"SKU-{n}"),
            brand=fields.pop("brand", "Acme"),
            price=Decimal(price),
            stock_quantity=stock,
            total_sales=0,
            status=fields.pop("status", ProductStatus.active),
            **fields,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product
    return _make


@pytest.fixture
def make_variant(db):
    def _make(product, stock=5, adjustment="0.00", size="M", color="Black", **fields):
        n = next(_seq)
        variant = ProductVariant(
            product_id=product.id,
            size=size,
            color=color,
            color_code=fields.pop("color_code", "#000000"),
            sku=fields.pop("sku", f"VSKU-{n}"),
            price_adjustment=Decimal(adjustment),
            stock_quantity=stock,
            is_active=fields.pop("is_active", True),
        )
        db.add(variant)
        db.commit()
        db.refresh(variant)
        return variant
    return _make


@pytest.fixture
def make_address(db):
    def _make(user, **fields):
        address = Address(
            user_id=user.id,
            first_name="Test",
            last_name="Buyer",
            phone="9876543210",
            address_line_1="12 MG Road",
            city="Bengaluru",
            state="Karnataka",
            postal_code="560001",
            **fields,
        )
        db.add(address)
        db.commit()
        db.refresh(address)
        return address
    return _make


@pytest.fixture
def address(make_address, buyer):
    return make_address(buyer)


@pytest.fixture
def place_order(db):
    """Checks out (product, quantity[, variant]) lines through the service layer."""
    def _place(buyer, address, *lines, payment_method="card"):
        requests = [
            order_service.LineRequest(
                product_id=line[0].id,
                quantity=line[1],
                variant_id=line[2].id if len(line) > 2 else None,
            )
            for line in lines
        ]
        return order_service.create_order(db, buyer, requests, address.id, payment_method)
    return _place
