"""
API tests for Order Service running with its full lifespan: tables, event
publisher, subscribers and audit bus.
"""

import pytest
from fastapi.testclient import TestClient

from order_service.app.core.database import OrderServiceDatabaseManager
from order_service.app.main import create_app

ADMIN_HEADERS = {"X-User-Email": "admin@example.com"}


@pytest.fixture
def app(tmp_path, test_settings):
    db_manager = OrderServiceDatabaseManager(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        pool_size=5,
        max_overflow=5,
    )
    return create_app(db_manager, test_settings)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def product_ids(client):
    ids = []
    for code, price in (("C1", "10.00"), ("C2", "5.00")):
        response = client.post(
            "/api/v1/products",
            json={"productName": f"Product {code}", "code": code, "price": price},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 201
        ids.append(response.json()["id"])
    return ids


def drain(client, app):
    client.portal.call(app.state.order_event_publisher.join)


def create_order(client, product_ids, email="alice@example.com", **extra):
    return client.post(
        "/api/v1/orders",
        json={"email": email, "productIds": product_ids, "payment": "CASH", **extra},
    )


class TestHealth:
    def test_health_reports_running_publisher(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["events"]["publisher_running"] is True


class TestOrdersApi:
    """Test cases for the order endpoints."""

    def test_create_order(self, client, product_ids):
        response = create_order(
            client,
            product_ids,
            shipping={"type": "URGENT", "carrier": "CORREIOS"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "alice@example.com"
        assert body["productCodes"] == ["C1", "C2"]
        assert body["billing"] == {"payment": "CASH", "totalPrice": "15.00"}
        assert body["shipping"] == {"type": "URGENT", "carrier": "CORREIOS"}
        assert isinstance(body["createdAt"], int)
        assert response.headers["X-Correlation-ID"]

    def test_shipping_defaults(self, client, product_ids):
        body = create_order(client, product_ids[:1]).json()

        assert body["shipping"] == {"type": "ECONOMIC", "carrier": "FEDEX"}

    def test_unknown_product(self, client, product_ids):
        response = create_order(client, [product_ids[0], "MISSING"])

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["type"] == "product_not_found"
        assert error["message"] == "Some product was not found"
        assert client.get("/api/v1/orders", params={"email": "alice@example.com"}).json() == []

    def test_invalid_payload(self, client, product_ids):
        response = client.post(
            "/api/v1/orders",
            json={"email": "not-an-email", "productIds": product_ids, "payment": "CASH"},
        )

        assert response.status_code == 422
        assert response.json()["error"]["type"] == "validation_error"

    def test_list_and_get_single_order(self, client, product_ids):
        order_id = create_order(client, product_ids).json()["id"]
        create_order(client, product_ids, email="bob@example.com")

        mine = client.get("/api/v1/orders", params={"email": "alice@example.com"})
        single = client.get(
            "/api/v1/orders", params={"email": "alice@example.com", "orderId": order_id}
        )
        everyone = client.get("/api/v1/orders")

        assert [o["id"] for o in mine.json()] == [order_id]
        assert [o["id"] for o in single.json()] == [order_id]
        assert len(everyone.json()) == 2

    def test_order_id_requires_email(self, client):
        response = client.get("/api/v1/orders", params={"orderId": "abc"})

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "validation_error"

    def test_delete_order_and_history(self, client, app, product_ids):
        order_id = create_order(client, product_ids).json()["id"]
        params = {"email": "alice@example.com", "orderId": order_id}

        response = client.delete("/api/v1/orders", params=params)
        assert response.status_code == 200
        assert response.json()["id"] == order_id

        drain(client, app)
        again = client.delete("/api/v1/orders", params=params)
        assert again.status_code == 409
        assert again.json()["error"]["type"] == "invalid_order_transition"

        never_created = client.delete(
            "/api/v1/orders", params={"email": "alice@example.com", "orderId": "nope"}
        )
        assert never_created.status_code == 404
        assert never_created.json()["error"]["type"] == "order_not_found"

        drain(client, app)
        events = client.get(
            "/api/v1/orders/events", params={"email": "alice@example.com"}
        ).json()
        assert [(e["eventType"], e["orderId"]) for e in events] == [
            ("ORDER_CREATED", order_id),
            ("ORDER_DELETED", order_id),
        ]
        assert all(e["totalPrice"] == "15.00" for e in events)

        deleted_only = client.get(
            "/api/v1/orders/events",
            params={"email": "alice@example.com", "eventType": "ORDER_DELETED"},
        ).json()
        assert [e["eventType"] for e in deleted_only] == ["ORDER_DELETED"]

    def test_email_domain_case_is_ignored(self, client, app, product_ids):
        email = "alice@Example.COM"
        created = create_order(client, product_ids, email=email)
        assert created.status_code == 201
        order_id = created.json()["id"]

        listed = client.get("/api/v1/orders", params={"email": email})
        assert [o["id"] for o in listed.json()] == [order_id]

        drain(client, app)
        events = client.get("/api/v1/orders/events", params={"email": email})
        assert [e["orderId"] for e in events.json()] == [order_id]

        deleted = client.delete(
            "/api/v1/orders", params={"email": email, "orderId": order_id}
        )
        assert deleted.status_code == 200

    def test_request_id_recorded_on_events(self, client, app, product_ids):
        response = client.post(
            "/api/v1/orders",
            json={"email": "alice@example.com", "productIds": product_ids, "payment": "CASH"},
            headers={"X-Correlation-ID": "req-123"},
        )
        assert response.headers["X-Correlation-ID"] == "req-123"

        drain(client, app)
        events = client.get(
            "/api/v1/orders/events", params={"email": "alice@example.com"}
        ).json()
        assert [e["requestId"] for e in events] == ["req-123"]

    def test_events_validation(self, client):
        missing_email = client.get("/api/v1/orders/events")
        bad_type = client.get(
            "/api/v1/orders/events",
            params={"email": "alice@example.com", "eventType": "ORDER_SHIPPED"},
        )

        assert missing_email.status_code == 422
        assert bad_type.status_code == 400


class TestProductsApi:
    def test_mutations_require_admin_header(self, client):
        response = client.post(
            "/api/v1/products",
            json={"productName": "Mouse", "code": "M1", "price": "9.90"},
        )

        assert response.status_code == 400

    def test_null_for_required_field_rejected(self, client, product_ids):
        response = client.put(
            f"/api/v1/products/{product_ids[0]}",
            json={"price": None},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 422
        assert response.json()["error"]["type"] == "validation_error"
        assert client.get(f"/api/v1/products/{product_ids[0]}").json()["price"] == "10.00"

    def test_product_crud(self, client, product_ids):
        product_id = product_ids[0]

        fetched = client.get(f"/api/v1/products/{product_id}")
        assert fetched.status_code == 200
        assert fetched.json()["productName"] == "Product C1"

        updated = client.put(
            f"/api/v1/products/{product_id}",
            json={"price": "12.50"},
            headers=ADMIN_HEADERS,
        )
        assert updated.status_code == 200
        assert updated.json()["price"] == "12.50"

        deleted = client.delete(f"/api/v1/products/{product_id}", headers=ADMIN_HEADERS)
        assert deleted.status_code == 200
        assert client.get(f"/api/v1/products/{product_id}").status_code == 404
        assert len(client.get("/api/v1/products").json()) == 1


class TestDeadLettersApi:
    def test_empty_and_unknown_entry(self, client):
        assert client.get("/api/v1/dead-letters").json() == []

        response = client.post("/api/v1/dead-letters/missing/redrive")
        assert response.status_code == 404
        assert response.json()["error"]["type"] == "http_error"
