from sqlalchemy import select

from conftest import auth_headers, sales_of, stock_of
from marketplace.models import Order, OrderStatus, Product, ProductVariant


def _cancel(client, user, order_id, reason=None):
    kwargs = {"headers": auth_headers(user)}
    if reason is not None:
        kwargs["json"] = {"reason": reason}
    return client.put(f"/api/orders/{order_id}/cancel", **kwargs)


def test_cancel_restores_stock_and_sales(client, db, buyer, seller, address, make_product, make_variant, place_order):
    plain = make_product(seller, stock=10)
    sized = make_product(seller, stock=50)
    variant = make_variant(sized, stock=4)
    order = place_order(buyer, address, (plain, 3), (sized, 2, variant))

    assert stock_of(db, Product, plain.id) == 7
    assert stock_of(db, ProductVariant, variant.id) == 2

    resp = _cancel(client, buyer, order.id, reason="Changed my mind")

    assert resp.status_code == 200
    data = resp.json()["data"]["order"]
    assert data["status"] == "cancelled"
    assert data["notes"].endswith("Cancelled by customer: Changed my mind")
    assert stock_of(db, Product, plain.id) == 10
    assert stock_of(db, ProductVariant, variant.id) == 4
    assert stock_of(db, Product, sized.id) == 50
    assert sales_of(db, plain.id) == 0
    assert sales_of(db, sized.id) == 0


def test_cancel_is_inverse_even_after_other_orders(client, db, buyer, seller, address, make_user,
                                                    make_address, make_product, place_order):
    product = make_product(seller, stock=10)
    order = place_order(buyer, address, (product, 4))

    other = make_user()
    other_order = place_order(other, make_address(other), (product, 5))
    assert stock_of(db, Product, product.id) == 1

    assert _cancel(client, buyer, order.id).status_code == 200

    # Only this order's quantity comes back; the other order keeps its units
    assert stock_of(db, Product, product.id) == 5
    assert sales_of(db, product.id) == 5
    db.expire_all()
    assert db.get(Order, other_order.id).status == OrderStatus.pending


def test_cancel_without_reason(client, buyer, seller, address, make_product, place_order):
    order = place_order(buyer, address, (make_product(seller), 1))
    resp = _cancel(client, buyer, order.id)
    assert resp.status_code == 200
    assert resp.json()["data"]["order"]["notes"] == "Cancelled by customer"


def test_confirmed_orders_can_be_cancelled(client, db, buyer, seller, address, make_product, place_order):
    product = make_product(seller, stock=3)
    order = place_order(buyer, address, (product, 3))
    client.put(f"/api/orders/{order.id}/status", json={"status": "confirmed"}, headers=auth_headers(seller))

    assert _cancel(client, buyer, order.id).status_code == 200
    assert stock_of(db, Product, product.id) == 3


def test_shipped_order_cannot_be_cancelled(client, db, buyer, seller, address, make_product, place_order):
    product = make_product(seller, stock=5)
    order = place_order(buyer, address, (product, 2))
    client.put(f"/api/orders/{order.id}/status", json={"status": "shipped"}, headers=auth_headers(seller))

    resp = _cancel(client, buyer, order.id)

    assert resp.status_code == 400
    assert "shipped" in resp.json()["message"]
    assert stock_of(db, Product, product.id) == 3
    db.expire_all()
    assert db.get(Order, order.id).status == OrderStatus.shipped


def test_double_cancel_restores_once(client, db, buyer, seller, address, make_product, place_order):
    product = make_product(seller, stock=5)
    order = place_order(buyer, address, (product, 2))

    assert _cancel(client, buyer, order.id).status_code == 200
    second = _cancel(client, buyer, order.id)

    assert second.status_code == 400
    assert stock_of(db, Product, product.id) == 5


def test_other_buyer_cannot_cancel(client, db, buyer, seller, address, make_user, make_product, place_order):
    product = make_product(seller, stock=5)
    order = place_order(buyer, address, (product, 2))

    resp = _cancel(client, make_user(), order.id)

    assert resp.status_code == 403
    assert stock_of(db, Product, product.id) == 3


def test_missing_order(client, buyer):
    resp = _cancel(client, buyer, 4040)
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Order not found"}


def test_cancel_skips_deleted_variant(client, db, buyer, seller, address, make_product, make_variant, place_order):
    product = make_product(seller, stock=8)
    variant = make_variant(product, stock=3)
    order = place_order(buyer, address, (product, 2, variant), (product, 1))

    db.delete(db.get(ProductVariant, variant.id))
    db.commit()

    resp = _cancel(client, buyer, order.id)

    assert resp.status_code == 200
    # The product-level line is restored; the variant line's counter is gone
    # and must not leak into the product counter
    assert stock_of(db, Product, product.id) == 8
    assert sales_of(db, product.id) == 0


def test_cancel_after_product_deletion(client, db, buyer, seller, address, make_product, place_order):
    kept = make_product(seller, stock=4)
    dropped = make_product(seller, stock=4)
    order = place_order(buyer, address, (kept, 1), (dropped, 1))

    db.delete(db.get(Product, dropped.id))
    db.commit()

    resp = _cancel(client, buyer, order.id)

    assert resp.status_code == 200
    assert stock_of(db, Product, kept.id) == 4
    assert db.execute(select(Product.id).where(Product.id == dropped.id)).first() is None


def test_stock_is_conserved_across_checkouts_and_cancellations(client, db, buyer, seller, address,
                                                               make_product, place_order):
    product = make_product(seller, stock=12)
    live = {}
    for quantity in (2, 3, 1, 4):
        order = place_order(buyer, address, (product, quantity))
        live[order.id] = quantity
        assert stock_of(db, Product, product.id) == 12 - sum(live.values())

    for order_id in list(live)[::2]:
        assert _cancel(client, buyer, order_id).status_code == 200
        del live[order_id]
        assert stock_of(db, Product, product.id) == 12 - sum(live.values())

    assert sales_of(db, product.id) == sum(live.values())
