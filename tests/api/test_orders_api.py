"""HTTP tests for /orders: status codes, error bodies and notifications."""

from sqlmodel import select

from app.models.notification import Notification

API = "/api/v1"


def order_body(users, products, **overrides):
    body = {
        "company_id": str(users.company.id),
        "items": [
            {"product_id": str(products.rice.id), "quantity": 3},
            {"product_id": str(products.oil.id), "quantity": 2},
        ],
        "delivery_address": "12 Mall Road",
        "delivery_area": "Downtown",
        "delivery_city": "Lahore",
    }
    body.update(overrides)
    return body


class TestCreate:
    def test_created(self, client, identity, session, users, products):
        identity.use(users.shopkeeper)

        resp = client.post(f"{API}/orders", json=order_body(users, products))

        assert resp.status_code == 201
        data = resp.json()
        assert data["order_number"] == "ORD-0001"
        assert data["final_amount"] == 228.5
        assert data["status"] == "pending"

        notes = session.exec(select(Notification)).all()
        assert [(n.recipient_id, n.type) for n in notes] == [(users.company.id, "order_placed")]

    def test_wrong_role(self, client, identity, users, products):
        identity.use(users.company)
        resp = client.post(f"{API}/orders", json=order_body(users, products))
        assert resp.status_code == 403
        assert resp.json()["detail"]["allowed_roles"] == ["shopkeeper"]

    def test_missing_fields_body(self, client, identity, users):
        identity.use(users.shopkeeper)
        resp = client.post(f"{API}/orders", json={"company_id": str(users.company.id)})

        assert resp.status_code == 400
        detail = resp.json()["detail"]
        assert detail["code"] == "missing_fields"
        assert "items" in detail["fields"]

    def test_insufficient_stock(self, client, identity, users, products):
        identity.use(users.shopkeeper)
        body = order_body(
            users, products, items=[{"product_id": str(products.oil.id), "quantity": 9}]
        )
        resp = client.post(f"{API}/orders", json=body)

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "order_items_rejected"

    def test_unknown_field_rejected(self, client, identity, users, products):
        identity.use(users.shopkeeper)
        resp = client.post(
            f"{API}/orders", json=order_body(users, products, shopkeeper_id="someone")
        )
        assert resp.status_code == 422


class TestRead:
    def test_by_number_and_by_id(self, client, identity, users, placed_order):
        identity.use(users.shopkeeper)

        by_number = client.get(f"{API}/orders/ord-0001")
        by_id = client.get(f"{API}/orders/{placed_order.id}")

        assert by_number.status_code == 200
        assert by_number.json()["id"] == by_id.json()["id"] == str(placed_order.id)
        assert by_number.json()["timeline"][0]["note"] == "Order created by shopkeeper"

    def test_not_found(self, client, identity, users):
        identity.use(users.admin)
        resp = client.get(f"{API}/orders/ORD-9999")
        assert resp.status_code == 404

    def test_outsider(self, client, identity, users, placed_order):
        identity.use(users.other_shopkeeper)
        resp = client.get(f"{API}/orders/{placed_order.id}")
        assert resp.status_code == 403

    def test_list_with_status_filter(self, client, identity, users, placed_order):
        identity.use(users.company)

        pending = client.get(f"{API}/orders", params={"status": "pending,approved"})
        delivered = client.get(f"{API}/orders", params={"status": "delivered"})

        assert pending.json()["summary"]["total_orders"] == 1
        assert delivered.json()["orders"] == []

    def test_list_with_naive_date_range(self, client, identity, users, placed_order):
        identity.use(users.admin)

        resp = client.get(
            f"{API}/orders",
            params={"start_date": "2020-01-01T00:00:00", "end_date": "2999-01-01T00:00:00"},
        )

        assert resp.status_code == 200
        assert resp.json()["summary"]["total_orders"] == 1
        assert resp.json()["summary"]["overdue"] == 0


class TestStatus:
    def test_approve_notifies_shopkeeper(self, client, identity, session, users, placed_order):
        identity.use(users.company)

        resp = client.patch(
            f"{API}/orders/{placed_order.order_number}/status", json={"status": "approved"}
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"
        notes = session.exec(
            select(Notification).where(Notification.recipient_id == users.shopkeeper.id)
        ).all()
        assert len(notes) == 1

    def test_invalid_transition_body(self, client, identity, users, placed_order):
        identity.use(users.admin)

        resp = client.patch(
            f"{API}/orders/{placed_order.id}/status", json={"status": "delivered"}
        )

        assert resp.status_code == 400
        assert resp.json()["detail"] == {
            "code": "invalid_transition",
            "message": "Cannot change order status from pending to delivered",
            "entity": "order",
            "from_status": "pending",
            "to_status": "delivered",
        }

    def test_unknown_status_value(self, client, identity, users, placed_order):
        identity.use(users.admin)
        resp = client.patch(f"{API}/orders/{placed_order.id}/status", json={"status": "lost"})
        assert resp.status_code == 422


class TestAssign:
    def test_assign(self, client, identity, session, users, placed_order):
        identity.use(users.company)
        client.patch(f"{API}/orders/{placed_order.id}/status", json={"status": "approved"})

        resp = client.post(
            f"{API}/orders/{placed_order.id}/assign",
            json={"delivery_worker_id": str(users.worker.id)},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "assigned"
        assert data["delivery_worker"]["name"] == "Wasim"

        worker_notes = session.exec(
            select(Notification).where(Notification.recipient_id == users.worker.id)
        ).all()
        assert [n.type for n in worker_notes] == ["delivery_assigned"]

    def test_shopkeeper_cannot_assign(self, client, identity, users, placed_order):
        identity.use(users.shopkeeper)
        resp = client.post(
            f"{API}/orders/{placed_order.id}/assign",
            json={"delivery_worker_id": str(users.worker.id)},
        )
        assert resp.status_code == 403
