import re

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import order_body


ORDER_NUMBER_RE = re.compile(r"^ORD-\d{8}-[0-9A-F]{6}$")


async def _failing_commit(self):
    raise SQLAlchemyError("boom")


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------

def test_guest_order_is_placed_with_computed_totals(client):
    resp = client.post("/api/orders", json=order_body())

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Order placed successfully"

    data = body["data"]
    assert data["status"] == "placed"
    assert ORDER_NUMBER_RE.match(data["order_number"])
    # 2 x 12.50 + 1 x 6.00, tax rate 10% in tests
    assert data["totals"] == {"subtotal": 31.0, "tax": 3.1, "total": 34.1}
    assert data["created_at"]


def test_guest_order_is_readable_without_token(client, place_order):
    placed = place_order()

    resp = client.get(f"/api/orders/{placed['id']}")

    assert resp.status_code == 200
    order = resp.json()["data"]
    assert order["customer_id"] is None
    assert order["payment"]["status"] == "pending"
    assert [i["name"] for i in order["items"]] == ["Margherita", "Tiramisu"]
    assert order["items"][0]["note"] == ""
    assert order["items"][1]["note"] == "no cocoa"


def test_authenticated_order_is_attributed_to_customer(client, place_order, customer_headers):
    placed = place_order(headers=customer_headers)

    resp = client.get(f"/api/orders/{placed['id']}", headers=customer_headers)

    assert resp.status_code == 200
    assert resp.json()["data"]["customer_id"] == "cust-1"


def test_line_item_fields_are_normalized(client, place_order):
    placed = place_order(items=[
        {"menu_item_id": 1, "name": "  Margherita  ", "price": "12.50", "qty": 3},
        {"menu_item_id": 3, "name": "Tiramisu", "price": 6},
    ], meta={"source": "qr"})

    order = client.get(f"/api/orders/{placed['id']}").json()["data"]

    assert order["items"][0]["name"] == "Margherita"
    assert order["items"][0]["quantity"] == 3
    assert order["items"][1]["quantity"] == 1
    assert order["meta"] == {"source": "qr"}
    assert order["totals"]["subtotal"] == 43.5


@pytest.mark.parametrize("items", [[], None])
def test_order_without_items_is_rejected(client, items):
    resp = client.post("/api/orders", json={"items": items})

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "message": "Order must contain at least one item"}


def test_every_invalid_line_item_is_reported(client):
    resp = client.post("/api/orders", json={"items": [
        {"menu_item_id": 1, "name": " ", "price": 5, "quantity": 1},
        {"menu_item_id": 2, "name": "Soup", "price": 0, "quantity": 1},
        {"menu_item_id": 3, "name": "Bread", "price": 2, "quantity": 0},
    ]})

    assert resp.status_code == 400
    body = resp.json()
    assert body["message"] == "Validation failed"
    assert [e["msg"] for e in body["errors"]] == [
        "Item at index 0 is missing a name",
        "Item 'Soup' has an invalid price",
        "Item 'Bread' has an invalid quantity",
    ]


def test_missing_menu_item_id_fails_request_validation(client):
    resp = client.post("/api/orders", json={"items": [{"name": "Soup", "price": 4}]})

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    assert any("menu_item_id" in e["loc"] for e in body["errors"])


def test_unknown_table_is_rejected(client):
    resp = client.post("/api/orders", json=order_body(table_id=999))

    assert resp.status_code == 400
    assert resp.json()["errors"] == [{"msg": "Invalid table ID"}]


def test_order_for_table_includes_table_summary(client, place_order, table):
    placed = place_order(table_id=table["id"])

    order = client.get(f"/api/orders/{placed['id']}").json()["data"]

    assert order["table_id"] == table["id"]
    assert order["table"] == {"id": table["id"], "table_number": 7, "qr_slug": "table-7"}


def test_non_finite_price_is_rejected(client):
    resp = client.post(
        "/api/orders",
        content='{"items": [{"menu_item_id": 1, "name": "X", "price": Infinity, "quantity": 1}]}',
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 400
    assert resp.json()["errors"] == [{"msg": "Item 'X' has an invalid price"}]


def test_overflowing_total_is_rejected(client, staff_headers):
    resp = client.post("/api/orders", json={"items": [
        {"menu_item_id": 1, "name": "X", "price": 1e308, "quantity": 10},
    ]})

    assert resp.status_code == 400
    body = resp.json()
    assert body["message"] == "Validation failed"
    assert body["errors"] == [{"msg": "Order total is out of range: items have an invalid price"}]
    assert client.get("/api/orders", headers=staff_headers).json()["pagination"]["total"] == 0


def test_order_number_collision_is_retried(client, monkeypatch):
    numbers = iter(["ORD-20261019-AAAAAA", "ORD-20261019-AAAAAA", "ORD-20261019-BBBBBB"])
    monkeypatch.setattr(
        "tableside.services.orders.generate_order_number",
        lambda prefix="ORD", now=None: next(numbers),
    )

    first = client.post("/api/orders", json=order_body())
    second = client.post("/api/orders", json=order_body())

    assert first.status_code == 201
    assert first.json()["data"]["order_number"] == "ORD-20261019-AAAAAA"
    assert second.status_code == 201
    assert second.json()["data"]["order_number"] == "ORD-20261019-BBBBBB"


def test_order_number_collisions_give_up_after_retries(client, monkeypatch):
    monkeypatch.setattr(
        "tableside.services.orders.generate_order_number",
        lambda prefix="ORD", now=None: "ORD-20261019-AAAAAA",
    )
    assert client.post("/api/orders", json=order_body()).status_code == 201

    resp = client.post("/api/orders", json=order_body())

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Failed to place order"}


def test_failed_commit_does_not_persist_order(client, monkeypatch, staff_headers):
    monkeypatch.setattr(AsyncSession, "commit", _failing_commit)

    resp = client.post("/api/orders", json=order_body())

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Failed to place order"}

    monkeypatch.undo()
    listing = client.get("/api/orders", headers=staff_headers).json()
    assert listing["pagination"]["total"] == 0
    assert listing["data"] == []


# ---------------------------------------------------------------------------
# get
# ---------------------------------------------------------------------------

def test_get_order_access_rules(client, place_order, customer_headers, other_customer_headers, staff_headers):
    order_id = place_order(headers=customer_headers)["id"]
    url = f"/api/orders/{order_id}"

    assert client.get(url).status_code == 401
    assert client.get(url, headers=other_customer_headers).status_code == 403
    assert client.get(url, headers=customer_headers).status_code == 200
    assert client.get(url, headers=staff_headers).status_code == 200


def test_get_missing_order_returns_404(client):
    resp = client.get("/api/orders/12345")

    assert resp.status_code == 404
    assert resp.json()["message"] == "Order not found"


def test_non_numeric_order_id_is_a_validation_error(client):
    resp = client.get("/api/orders/not-an-id")

    assert resp.status_code == 400
    assert resp.json()["message"] == "Validation failed"


def test_invalid_token_is_rejected(client, place_order):
    order_id = place_order()["id"]

    resp = client.get(f"/api/orders/{order_id}", headers={"Authorization": "Bearer garbage"})

    assert resp.status_code == 401


def test_get_order_includes_menu_item_details(client, menu, place_order):
    placed = place_order()

    items = client.get(f"/api/orders/{placed['id']}").json()["data"]["items"]

    assert items[0]["menu_item"] == {
        "id": menu["Margherita"],
        "name": "Margherita",
        "description": None,
        "price": 12.5,
        "category": "pizza",
        "available": True,
        "image_url": None,
    }
    assert items[1]["menu_item"]["name"] == "Tiramisu"
    # the snapshot taken at order time is still reported alongside
    assert items[1]["price"] == 6.0


def test_deleted_menu_item_has_no_details(client, place_order):
    placed = place_order()

    items = client.get(f"/api/orders/{placed['id']}").json()["data"]["items"]

    assert [i["menu_item"] for i in items] == [None, None]
    assert [i["name"] for i in items] == ["Margherita", "Tiramisu"]


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------

def test_status_update_requires_staff(client, place_order, customer_headers):
    order_id = place_order(headers=customer_headers)["id"]
    url = f"/api/orders/{order_id}/status"

    assert client.patch(url, json={"status": "preparing"}).status_code == 401
    resp = client.patch(url, json={"status": "preparing"}, headers=customer_headers)
    assert resp.status_code == 403
    assert resp.json()["success"] is False


def test_staff_updates_status(client, place_order, staff_headers):
    order_id = place_order()["id"]

    resp = client.patch(f"/api/orders/{order_id}/status", json={"status": "preparing"}, headers=staff_headers)

    assert resp.status_code == 200
    assert resp.json()["message"] == "Order status updated"
    assert resp.json()["data"] == {"id": order_id, "status": "preparing"}


def test_invalid_status_is_rejected(client, place_order, admin_headers):
    order_id = place_order()["id"]

    resp = client.patch(f"/api/orders/{order_id}/status", json={"status": "eaten"}, headers=admin_headers)

    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid order status"


def test_status_update_on_missing_order(client, staff_headers):
    resp = client.patch("/api/orders/999/status", json={"status": "ready"}, headers=staff_headers)

    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# payment
# ---------------------------------------------------------------------------

def test_payment_status_and_method_are_normalized(client, place_order, staff_headers):
    order_id = place_order()["id"]

    resp = client.patch(
        f"/api/orders/{order_id}/payment",
        json={"status": "  PAID ", "method": " Card "},
        headers=staff_headers,
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["payment"]["status"] == "paid"
    assert data["payment"]["method"] == "card"
    assert data["payment"]["paid_at"] is not None
    # not served yet, so the order stays where it was
    assert data["status"] == "placed"


def test_paying_a_served_order_completes_it(client, place_order, staff_headers):
    order_id = place_order()["id"]
    client.patch(f"/api/orders/{order_id}/status", json={"status": "served"}, headers=staff_headers)

    resp = client.patch(f"/api/orders/{order_id}/payment", json={"status": "paid"}, headers=staff_headers)

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "completed"


def test_refund_sets_refunded_at_and_keeps_totals(client, place_order, staff_headers):
    placed = place_order()
    order_id = placed["id"]

    resp = client.patch(f"/api/orders/{order_id}/payment", json={"status": "refunded"}, headers=staff_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["payment"]["refunded_at"] is not None
    assert resp.json()["data"]["payment"]["paid_at"] is None

    order = client.get(f"/api/orders/{order_id}", headers=staff_headers).json()["data"]
    assert order["totals"] == placed["totals"]


def test_invalid_payment_status_is_rejected(client, place_order, staff_headers):
    order_id = place_order()["id"]

    resp = client.patch(f"/api/orders/{order_id}/payment", json={"status": "maybe"}, headers=staff_headers)

    assert resp.status_code == 400
    body = resp.json()
    assert body["message"] == "Invalid payment status"
    assert body["errors"][0]["msg"] == "Payment status must be one of: pending, paid, failed, refunded"


def test_payment_update_requires_staff(client, place_order, customer_headers):
    order_id = place_order(headers=customer_headers)["id"]

    resp = client.patch(f"/api/orders/{order_id}/payment", json={"status": "paid"}, headers=customer_headers)

    assert resp.status_code == 403


def test_payment_update_on_missing_order(client, staff_headers):
    resp = client.patch("/api/orders/999/payment", json={"status": "paid"}, headers=staff_headers)

    assert resp.status_code == 404


def test_omitted_method_keeps_stored_method(client, place_order, staff_headers):
    order_id = place_order()["id"]
    url = f"/api/orders/{order_id}/payment"
    client.patch(url, json={"status": "paid", "method": "card"}, headers=staff_headers)

    resp = client.patch(url, json={"status": "refunded"}, headers=staff_headers)

    assert resp.status_code == 200
    assert resp.json()["data"]["payment"]["method"] == "card"
    assert resp.json()["data"]["payment"]["status"] == "refunded"


def test_failed_payment_commit_is_rolled_back(client, place_order, staff_headers, monkeypatch):
    order_id = place_order()["id"]
    client.patch(f"/api/orders/{order_id}/status", json={"status": "served"}, headers=staff_headers)
    monkeypatch.setattr(AsyncSession, "commit", _failing_commit)

    resp = client.patch(
        f"/api/orders/{order_id}/payment",
        json={"status": "paid", "method": "cash"},
        headers=staff_headers,
    )

    assert resp.status_code == 500
    assert resp.json() == {
        "success": False,
        "message": "Failed to update payment",
        "errors": [{"msg": "boom"}],
    }

    monkeypatch.undo()
    order = client.get(f"/api/orders/{order_id}", headers=staff_headers).json()["data"]
    assert order["payment"]["status"] == "pending"
    assert order["payment"]["method"] is None
    assert order["status"] == "served"


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------

def test_listing_requires_authentication(client):
    resp = client.get("/api/orders")

    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_customers_only_see_their_own_orders(client, place_order, customer_headers, other_customer_headers):
    mine = place_order(headers=customer_headers)
    place_order(headers=other_customer_headers)
    place_order()

    resp = client.get("/api/orders", headers=customer_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert [o["id"] for o in body["data"]] == [mine["id"]]
    assert body["pagination"]["total"] == 1


def test_customer_filters_do_not_widen_scope(client, place_order, customer_headers, other_customer_headers):
    place_order(headers=other_customer_headers)

    resp = client.get("/api/orders?status=placed", headers=customer_headers)

    assert resp.json()["data"] == []


def test_staff_see_all_orders_newest_first(client, place_order, customer_headers, staff_headers):
    first = place_order(headers=customer_headers)
    second = place_order()

    body = client.get("/api/orders", headers=staff_headers).json()

    assert [o["id"] for o in body["data"]] == [second["id"], first["id"]]
    assert body["message"] == "Orders retrieved"


def test_staff_filter_by_status_and_table(client, place_order, staff_headers, table):
    at_table = place_order(table_id=table["id"])
    elsewhere = place_order()
    client.patch(f"/api/orders/{elsewhere['id']}/status", json={"status": "ready"}, headers=staff_headers)

    by_table = client.get(f"/api/orders?table_id={table['id']}", headers=staff_headers).json()
    by_status = client.get("/api/orders?status=ready", headers=staff_headers).json()
    bogus_status = client.get("/api/orders?status=eaten", headers=staff_headers).json()

    assert [o["id"] for o in by_table["data"]] == [at_table["id"]]
    assert [o["id"] for o in by_status["data"]] == [elsewhere["id"]]
    # an unknown status filter is ignored
    assert bogus_status["pagination"]["total"] == 2


def test_pagination(client, place_order, staff_headers):
    ids = [place_order()["id"] for _ in range(5)]

    body = client.get("/api/orders?page=2&limit=2", headers=staff_headers).json()

    assert body["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}
    assert [o["id"] for o in body["data"]] == [ids[2], ids[1]]


def test_default_page_size(client, place_order, staff_headers):
    place_order()

    body = client.get("/api/orders", headers=staff_headers).json()

    assert body["pagination"] == {"page": 1, "limit": 20, "total": 1, "pages": 1}


def test_listed_line_items_include_menu_item_details(client, menu, place_order, staff_headers):
    place_order()
    place_order(items=[
        {"menu_item_id": menu["Marinara"], "name": "Marinara", "price": 10.0, "quantity": 1},
        {"menu_item_id": 42, "name": "Old special", "price": 9.0, "quantity": 1},
    ])

    orders = client.get("/api/orders", headers=staff_headers).json()["data"]

    newest, oldest = orders
    assert newest["items"][0]["menu_item"]["name"] == "Marinara"
    assert newest["items"][0]["menu_item"]["available"] is False
    assert newest["items"][1]["menu_item"] is None
    assert [i["menu_item"]["id"] for i in oldest["items"]] == [menu["Margherita"], menu["Tiramisu"]]


# ---------------------------------------------------------------------------
# cancel
# ---------------------------------------------------------------------------

def test_owner_cancels_order(client, place_order, customer_headers):
    order_id = place_order(headers=customer_headers)["id"]

    resp = client.post(f"/api/orders/{order_id}/cancel", headers=customer_headers)

    assert resp.status_code == 200
    assert resp.json()["message"] == "Order canceled"
    assert resp.json()["data"] == {"id": order_id, "status": "canceled"}


def test_order_cannot_be_canceled_twice(client, place_order, customer_headers):
    order_id = place_order(headers=customer_headers)["id"]
    client.post(f"/api/orders/{order_id}/cancel", headers=customer_headers)

    resp = client.post(f"/api/orders/{order_id}/cancel", headers=customer_headers)

    assert resp.status_code == 404
    assert resp.json()["message"] == "Order not found or cannot be canceled"


def test_completed_order_cannot_be_canceled(client, place_order, staff_headers):
    order_id = place_order()["id"]
    client.patch(f"/api/orders/{order_id}/status", json={"status": "served"}, headers=staff_headers)
    client.patch(f"/api/orders/{order_id}/payment", json={"status": "paid"}, headers=staff_headers)

    resp = client.post(f"/api/orders/{order_id}/cancel", headers=staff_headers)

    assert resp.status_code == 404
    order = client.get(f"/api/orders/{order_id}", headers=staff_headers).json()["data"]
    assert order["status"] == "completed"


def test_cancel_access_rules(client, place_order, customer_headers, other_customer_headers, staff_headers):
    order_id = place_order(headers=customer_headers)["id"]
    url = f"/api/orders/{order_id}/cancel"

    assert client.post(url).status_code == 401
    assert client.post(url, headers=other_customer_headers).status_code == 403
    assert client.post(url, headers=staff_headers).status_code == 200


def test_customer_cannot_cancel_guest_order(client, place_order, customer_headers):
    order_id = place_order()["id"]

    resp = client.post(f"/api/orders/{order_id}/cancel", headers=customer_headers)

    assert resp.status_code == 403


def test_failed_cancel_commit_is_rolled_back(client, place_order, customer_headers, monkeypatch):
    order_id = place_order(headers=customer_headers)["id"]
    monkeypatch.setattr(AsyncSession, "commit", _failing_commit)

    resp = client.post(f"/api/orders/{order_id}/cancel", headers=customer_headers)

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Failed to cancel order"}

    monkeypatch.undo()
    order = client.get(f"/api/orders/{order_id}", headers=customer_headers).json()["data"]
    assert order["status"] == "placed"


def test_cancel_missing_order(client, staff_headers):
    resp = client.post("/api/orders/999/cancel", headers=staff_headers)

    assert resp.status_code == 404
    assert resp.json()["message"] == "Order not found"
