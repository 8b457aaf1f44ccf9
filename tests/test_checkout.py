from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import auth_headers, sales_of, stock_of
from marketplace.core.errors import InsufficientStock
from marketplace.models import Cart, CartItem, Order, OrderItem, Product, ProductStatus, ProductVariant
from marketplace.services import catalog
from marketplace.services import orders as order_service
from marketplace.services.orders import LineRequest


def _checkout(client, buyer, address, items, payment_method="card"):
    return client.post(
        "/api/orders",
        json={"items": items, "shipping_address_id": address.id, "payment_method": payment_method},
        headers=auth_headers(buyer),
    )


def _order_count(db):
    return db.execute(select(func.count(Order.id))).scalar_one()


def test_checkout_decrements_stock_and_prices_order(client, db, buyer, seller, address, make_product):
    product = make_product(seller, price="100.00", stock=5)

    resp = _checkout(client, buyer, address, [{"product_id": product.id, "quantity": 3}])

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    order = body["data"]["order"]
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["order_number"].startswith("ORD-")
    assert Decimal(order["subtotal"]) == Decimal("300.00")
    assert Decimal(order["tax_amount"]) == Decimal("54.00")
    assert Decimal(order["shipping_amount"]) == Decimal("50.00")
    assert Decimal(order["total_amount"]) == Decimal("404.00")
    assert len(order["items"]) == 1
    assert order["items"][0]["quantity"] == 3
    assert Decimal(order["items"][0]["unit_price"]) == Decimal("100.00")
    assert stock_of(db, Product, product.id) == 2
    assert sales_of(db, product.id) == 3


def test_overdraw_is_rejected_without_side_effects(client, db, buyer, seller, address, make_product):
    product = make_product(seller, stock=2)

    resp = _checkout(client, buyer, address, [{"product_id": product.id, "quantity": 3}])

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["available"] == 2
    assert "Insufficient stock" in body["message"]
    assert _order_count(db) == 0
    assert stock_of(db, Product, product.id) == 2


def test_failing_second_line_rolls_back_first(client, db, buyer, seller, address, make_product):
    first = make_product(seller, stock=10)
    second = make_product(seller, stock=1)

    resp = _checkout(client, buyer, address, [
        {"product_id": first.id, "quantity": 4},
        {"product_id": second.id, "quantity": 2},
    ])

    assert resp.status_code == 400
    assert resp.json()["available"] == 1
    assert _order_count(db) == 0
    assert db.execute(select(func.count(OrderItem.id))).scalar_one() == 0
    assert stock_of(db, Product, first.id) == 10
    assert sales_of(db, first.id) == 0


def test_variant_stock_governs_variant_lines(client, db, buyer, seller, address, make_product, make_variant):
    product = make_product(seller, price="200.00", stock=100)
    variant = make_variant(product, stock=2, adjustment="25.00", size="XL", color="Blue")

    rejected = _checkout(client, buyer, address, [
        {"product_id": product.id, "variant_id": variant.id, "quantity": 3},
    ])
    assert rejected.status_code == 400
    assert rejected.json()["available"] == 2

    resp = _checkout(client, buyer, address, [
        {"product_id": product.id, "variant_id": variant.id, "quantity": 2},
    ])
    assert resp.status_code == 201
    item = resp.json()["data"]["order"]["items"][0]
    assert Decimal(item["unit_price"]) == Decimal("225.00")
    assert item["product_sku"] == variant.sku
    assert item["variant_details"] == {"size": "XL", "color": "Blue", "color_code": "#000000"}
    assert stock_of(db, ProductVariant, variant.id) == 0
    assert stock_of(db, Product, product.id) == 100
    # Sales are counted on the product even for variant lines
    assert sales_of(db, product.id) == 2


def test_duplicate_lines_are_checked_against_combined_quantity(client, db, buyer, seller, address, make_product):
    product = make_product(seller, stock=5)

    resp = _checkout(client, buyer, address, [
        {"product_id": product.id, "quantity": 3},
        {"product_id": product.id, "quantity": 3},
    ])

    assert resp.status_code == 400
    assert resp.json()["available"] == 5
    assert stock_of(db, Product, product.id) == 5


def test_subtotal_equals_sum_of_line_totals(client, buyer, seller, address, make_product, make_variant):
    cheap = make_product(seller, price="19.99", stock=10)
    discounted = make_product(seller, price="250.00", discount_price=Decimal("199.50"), stock=10)
    variant = make_variant(discounted, stock=10, adjustment="10.25")

    resp = _checkout(client, buyer, address, [
        {"product_id": cheap.id, "quantity": 3},
        {"product_id": discounted.id, "variant_id": variant.id, "quantity": 2},
    ])

    order = resp.json()["data"]["order"]
    line_sum = sum(Decimal(i["total_price"]) for i in order["items"])
    assert Decimal(order["subtotal"]) == line_sum == Decimal("479.47")
    assert Decimal(order["total_amount"]) == (
        Decimal(order["subtotal"]) + Decimal(order["tax_amount"])
        + Decimal(order["shipping_amount"]) - Decimal(order["discount_amount"])
    )


def test_free_shipping_above_threshold(client, buyer, seller, address, make_product):
    product = make_product(seller, price="300.00", stock=5)
    resp = _checkout(client, buyer, address, [{"product_id": product.id, "quantity": 2}])
    order = resp.json()["data"]["order"]
    assert Decimal(order["shipping_amount"]) == Decimal("0.00")
    assert Decimal(order["total_amount"]) == Decimal("708.00")


@pytest.mark.parametrize("foreign", [True, False])
def test_invalid_address_is_rejected(client, db, buyer, seller, make_user, make_address, make_product, foreign):
    product = make_product(seller, stock=5)
    if foreign:
        address_id = make_address(make_user()).id
    else:
        address_id = 9999

    resp = client.post(
        "/api/orders",
        json={"items": [{"product_id": product.id, "quantity": 1}],
              "shipping_address_id": address_id, "payment_method": "upi"},
        headers=auth_headers(buyer),
    )

    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid shipping address"
    assert stock_of(db, Product, product.id) == 5


def test_inactive_product_is_unavailable(client, db, buyer, seller, address, make_product):
    product = make_product(seller, stock=5, status=ProductStatus.inactive)
    resp = _checkout(client, buyer, address, [{"product_id": product.id, "quantity": 1}])
    assert resp.status_code == 400
    assert resp.json()["product_id"] == product.id
    assert _order_count(db) == 0


def test_sellers_cannot_check_out(client, seller, make_address, make_product):
    product = make_product(seller)
    address = make_address(seller)
    resp = _checkout(client, seller, address, [{"product_id": product.id, "quantity": 1}])
    assert resp.status_code == 403


def test_unauthenticated_checkout_is_rejected(client):
    resp = client.post("/api/orders", json={"shipping_address_id": 1, "payment_method": "card"})
    assert resp.status_code == 401


def test_zero_quantity_fails_validation(client, buyer, seller, address, make_product):
    product = make_product(seller)
    resp = _checkout(client, buyer, address, [{"product_id": product.id, "quantity": 0}])
    assert resp.status_code == 422


def test_checkout_clears_cart(client, db, buyer, seller, address, make_product):
    product = make_product(seller, stock=5)
    other = make_product(seller, stock=5)
    client.post("/api/cart/add", json={"product_id": other.id, "quantity": 2}, headers=auth_headers(buyer))

    resp = _checkout(client, buyer, address, [{"product_id": product.id, "quantity": 1}])

    assert resp.status_code == 201
    cart = db.execute(select(Cart).where(Cart.user_id == buyer.id)).scalar_one()
    db.refresh(cart)
    assert cart.total_items == 0
    assert Decimal(cart.total_amount) == Decimal("0")
    assert db.execute(select(func.count(CartItem.id))).scalar_one() == 0


def test_checkout_without_items_orders_the_cart(client, db, buyer, seller, address, make_product):
    product = make_product(seller, price="40.00", stock=5)
    client.post("/api/cart/add", json={"product_id": product.id, "quantity": 2}, headers=auth_headers(buyer))

    resp = client.post(
        "/api/orders",
        json={"shipping_address_id": address.id, "payment_method": "cod"},
        headers=auth_headers(buyer),
    )

    assert resp.status_code == 201
    order = resp.json()["data"]["order"]
    assert order["payment_method"] == "cod"
    assert [i["quantity"] for i in order["items"]] == [2]
    assert stock_of(db, Product, product.id) == 3
    assert db.execute(select(func.count(CartItem.id))).scalar_one() == 0


def test_empty_order_is_rejected(client, db, buyer, address):
    resp = client.post(
        "/api/orders",
        json={"items": [], "shipping_address_id": address.id, "payment_method": "card"},
        headers=auth_headers(buyer),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "At least one item is required"
    assert _order_count(db) == 0


def test_lost_race_reports_post_update_stock(db, buyer, seller, address, make_product, monkeypatch):
    product = make_product(seller, stock=3)
    real_decrement = catalog.decrement_stock

    def competing_checkout(session, target, quantity):
        # Another buyer takes two units between our read and our write
        session.execute(
            Product.__table__.update()
            .where(Product.id == target.product_id)
            .values(stock_quantity=1)
        )
        return real_decrement(session, target, quantity)

    monkeypatch.setattr(catalog, "decrement_stock", competing_checkout)

    with pytest.raises(InsufficientStock) as excinfo:
        order_service.create_order(
            db, buyer, [LineRequest(product_id=product.id, quantity=3)], address.id, "card"
        )

    assert excinfo.value.available == 1
    assert _order_count(db) == 0
    # The competing write was part of the rolled back transaction
    assert stock_of(db, Product, product.id) == 3


def test_snapshot_survives_catalog_edits(client, db, buyer, seller, address, make_product):
    product = make_product(seller, price="80.00", stock=5, name="Linen Shirt")
    resp = _checkout(client, buyer, address, [{"product_id": product.id, "quantity": 1}])
    order_id = resp.json()["data"]["order"]["id"]

    product.name = "Renamed Shirt"
    product.price = Decimal("999.00")
    db.commit()

    order = client.get(f"/api/orders/{order_id}", headers=auth_headers(buyer)).json()["data"]["order"]
    item = order["items"][0]
    assert item["product_name"] == "Linen Shirt"
    assert Decimal(item["unit_price"]) == Decimal("80.00")
    assert Decimal(order["subtotal"]) == Decimal("80.00")


def test_snapshot_survives_product_deletion(client, db, buyer, seller, address, make_product, make_variant):
    product = make_product(seller, price="60.00", stock=5, name="Canvas Tote")
    variant = make_variant(product, stock=5, size="OS", color="Natural")
    resp = _checkout(client, buyer, address, [
        {"product_id": product.id, "variant_id": variant.id, "quantity": 2},
    ])
    order_id = resp.json()["data"]["order"]["id"]

    db.delete(db.get(Product, product.id))
    db.commit()

    order = client.get(f"/api/orders/{order_id}", headers=auth_headers(buyer)).json()["data"]["order"]
    item = order["items"][0]
    assert item["product_id"] is None
    assert item["variant_id"] is None
    assert item["product_name"] == "Canvas Tote"
    assert item["variant_details"]["color"] == "Natural"
    assert Decimal(item["total_price"]) == Decimal("120.00")
