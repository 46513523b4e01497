from decimal import Decimal

from conftest import add_product, auth_headers, get_order, get_stock, run
from storefront.fake_payment import FakePaymentScenario, build_payment, encode_redirect_data
from storefront.orders import SIGNED_FIELD_NAMES
from storefront.signature import sign, verify


def test_checkout_requires_a_token(client, db):
    product_id = run(add_product(db))
    r = client.post("/api/orders", json={"items": [{"product_id": product_id, "quantity": 1}]})
    assert r.status_code == 401


def test_checkout_creates_a_signed_pending_order(client, db, settings):
    product_id = run(add_product(db, price="1000", stock=5))

    r = client.post("/api/orders", json={"items": [{"product_id": product_id, "quantity": 2}]},
                    headers=auth_headers())

    assert r.status_code == 201
    body = r.json()
    # 2000 subtotal + 500 shipping + 13% tax
    assert body["total_amount"] == "2760"
    assert body["form_action"] == settings.form_url
    fields = body["fields"]
    assert fields["total_amount"] == "2760"
    assert fields["product_code"] == "EPAYTEST"
    assert fields["signed_field_names"] == SIGNED_FIELD_NAMES
    assert fields["signature"] == sign(fields, SIGNED_FIELD_NAMES, settings.secret_key)
    assert verify(fields, fields["signature"], settings.secret_key)

    stored = run(get_order(db, body["transaction_uuid"]))
    assert stored.status == "PENDING"
    assert stored.total_amount == Decimal("2760")
    assert stored.shipping_charge == Decimal("500")
    assert stored.tax == Decimal("260")
    # stock is only taken at settlement
    assert run(get_stock(db, product_id)) == 5


def test_checkout_rounds_tax_half_up(client, db):
    product_id = run(add_product(db, price="1200.50"))
    r = client.post("/api/orders", json={"items": [{"product_id": product_id, "quantity": 1}]},
                    headers=auth_headers())
    assert r.json()["total_amount"] == "1856.50"


def test_checkout_merges_repeated_products(client, db):
    product_id = run(add_product(db, price="100", stock=3))
    r = client.post("/api/orders", json={"items": [{"product_id": product_id, "quantity": 2},
                                                   {"product_id": product_id, "quantity": 1}]},
                    headers=auth_headers())
    assert r.status_code == 201
    stored = run(get_order(db, r.json()["transaction_uuid"]))
    assert [(i.product_id, i.quantity) for i in stored.items] == [(product_id, 3)]


def test_checkout_rejects_missing_product_and_short_stock(client, db):
    product_id = run(add_product(db, stock=1))
    missing = client.post("/api/orders", json={"items": [{"product_id": 999, "quantity": 1}]}, headers=auth_headers())
    short = client.post("/api/orders", json={"items": [{"product_id": product_id, "quantity": 2}]},
                        headers=auth_headers())
    assert missing.status_code == 404
    assert short.status_code == 400


def test_checkout_validates_quantities(client, db):
    product_id = run(add_product(db))
    for items in ([], [{"product_id": product_id, "quantity": 0}], [{"product_id": product_id, "quantity": 101}]):
        r = client.post("/api/orders", json={"items": items}, headers=auth_headers())
        assert r.status_code == 422


def test_checkout_then_pay(client, db, settings):
    product_id = run(add_product(db, price="1000", stock=5))
    checkout = client.post("/api/orders", json={"items": [{"product_id": product_id, "quantity": 1}]},
                           headers=auth_headers()).json()

    payment = build_payment(FakePaymentScenario.SUCCESS, checkout["transaction_uuid"],
                            checkout["total_amount"], settings.secret_key)
    r = client.post("/api/orders/verify-payment", json={"data": encode_redirect_data(payment)})
    assert r.status_code == 200
    assert run(get_stock(db, product_id)) == 4

    mine = client.get("/api/orders/my-orders", headers=auth_headers()).json()
    assert mine["count"] == 1
    assert mine["orders"][0]["status"] == "COMPLETED"
    assert mine["orders"][0]["id"] == checkout["order_id"]


def test_orders_are_private(client, db):
    product_id = run(add_product(db))
    order_id = client.post("/api/orders", json={"items": [{"product_id": product_id, "quantity": 1}]},
                           headers=auth_headers("alice")).json()["order_id"]

    assert client.get(f"/api/orders/{order_id}", headers=auth_headers("alice")).status_code == 200
    assert client.get(f"/api/orders/{order_id}", headers=auth_headers("bob")).status_code == 404
    assert client.get("/api/orders/my-orders", headers=auth_headers("bob")).json()["count"] == 0
