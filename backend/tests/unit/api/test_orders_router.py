"""Tests for the order, refund and return endpoints."""

from fastapi.testclient import TestClient

from tests.conftest import (
    COURIER,
    CUSTOMER,
    OTHER_CUSTOMER,
    PAYMENT_INTENT,
    PRODUCT,
    SELLER,
    WAREHOUSE,
    FakeGateway,
)
from tests.unit.api.conftest import ADMIN_HEADERS, SYSTEM_HEADERS, headers

CUSTOMER_HEADERS = headers("customer", CUSTOMER)
SELLER_HEADERS = headers("seller", SELLER)
COURIER_HEADERS = headers("courier", COURIER)


def order_body(**overrides) -> dict:
    body = {
        "customer_ref": CUSTOMER,
        "seller_ref": SELLER,
        "items": [{"product_ref": PRODUCT, "quantity": 2, "unit_price": "10.00"}],
        "payment_intent_ref": PAYMENT_INTENT,
    }
    body.update(overrides)
    return body


def create_order(client: TestClient) -> str:
    response = client.post("/api/orders", json=order_body(), headers=CUSTOMER_HEADERS)
    assert response.status_code == 201
    return response.json()["order_id"]


def fire(client: TestClient, order_id: str, event: str, actor_headers=SYSTEM_HEADERS, **fields):
    return client.post(
        f"/api/orders/{order_id}/transitions",
        json={"event": event, **fields},
        headers=actor_headers,
    )


def paid_order(client: TestClient) -> str:
    order_id = create_order(client)
    assert fire(client, order_id, "PaymentCaptured").status_code == 200
    return order_id


class TestCreateOrder:
    def test_customer_creates_own_order(self, client: TestClient) -> None:
        response = client.post("/api/orders", json=order_body(), headers=CUSTOMER_HEADERS)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["payment_status"] == "unpaid"
        assert data["total_amount"] == "20.00"
        assert data["currency"] == "EUR"
        assert response.headers["X-Correlation-ID"]

    def test_customer_cannot_order_for_someone_else(self, client: TestClient) -> None:
        response = client.post(
            "/api/orders",
            json=order_body(customer_ref=OTHER_CUSTOMER),
            headers=CUSTOMER_HEADERS,
        )

        assert response.status_code == 403
        assert response.json()["error_code"] == "ERR_ORDER_004"

    def test_items_are_required(self, client: TestClient) -> None:
        response = client.post("/api/orders", json=order_body(items=[]), headers=ADMIN_HEADERS)
        assert response.status_code == 422

    def test_actor_header_is_required(self, client: TestClient) -> None:
        response = client.post("/api/orders", json=order_body())
        assert response.status_code == 422


class TestGetOrder:
    def test_parties_can_read(self, client: TestClient) -> None:
        order_id = create_order(client)

        for actor_headers in (CUSTOMER_HEADERS, SELLER_HEADERS, ADMIN_HEADERS):
            response = client.get(f"/api/orders/{order_id}", headers=actor_headers)
            assert response.status_code == 200
            assert response.json()["order_id"] == order_id

    def test_other_customer_cannot_read(self, client: TestClient) -> None:
        order_id = create_order(client)

        response = client.get(
            f"/api/orders/{order_id}", headers=headers("customer", OTHER_CUSTOMER)
        )

        assert response.status_code == 403

    def test_unassigned_courier_cannot_read(self, client: TestClient) -> None:
        order_id = create_order(client)
        response = client.get(f"/api/orders/{order_id}", headers=COURIER_HEADERS)
        assert response.status_code == 403

    def test_unknown_order(self, client: TestClient) -> None:
        response = client.get("/api/orders/ORD-2026-MISSING", headers=ADMIN_HEADERS)

        assert response.status_code == 404
        assert response.json()["error_code"] == "ERR_ORDER_002"


class TestTransitions:
    def test_fulfillment_flow(self, client: TestClient) -> None:
        order_id = paid_order(client)

        assert fire(client, order_id, "StartProcessing", SELLER_HEADERS).status_code == 200
        courier = client.put(
            f"/api/orders/{order_id}/courier",
            json={"courier_ref": COURIER},
            headers=ADMIN_HEADERS,
        )
        assert courier.status_code == 200
        assert fire(client, order_id, "Ship", COURIER_HEADERS).json()["status"] == "shipped"
        delivered = fire(client, order_id, "Deliver", COURIER_HEADERS)

        assert delivered.status_code == 200
        assert delivered.json()["status"] == "delivered"

    def test_invalid_transition_is_conflict(self, client: TestClient) -> None:
        order_id = create_order(client)

        response = fire(client, order_id, "Deliver")

        assert response.status_code == 409
        assert response.json()["error_code"] == "ERR_ORDER_001"
        assert response.json()["details"]["current"] == "pending"

    def test_unknown_event_is_rejected(self, client: TestClient) -> None:
        order_id = create_order(client)
        assert fire(client, order_id, "Teleport").status_code == 422

    def test_customer_cancels_pending_order(self, client: TestClient) -> None:
        order_id = create_order(client)

        response = fire(client, order_id, "Cancel", CUSTOMER_HEADERS, reason="changed mind")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_reason"] == "changed mind"

    def test_cancel_of_paid_order_restocks_and_refunds(
        self, client: TestClient, api_gateway: FakeGateway
    ) -> None:
        order_id = paid_order(client)

        response = fire(client, order_id, "Cancel", SELLER_HEADERS)

        assert response.json()["payment_status"] == "refunded"
        assert client.get(f"/api/inventory/stock/{PRODUCT}").json()["total_quantity"] == 10
        assert len(api_gateway.refund_calls) == 1

    def test_capture_without_stock_refunds_the_payment(
        self, client: TestClient, api_gateway: FakeGateway
    ) -> None:
        client.put(
            f"/api/inventory/stock/{PRODUCT}/{WAREHOUSE}",
            json={"quantity": 1},
            headers=ADMIN_HEADERS,
        )
        response = client.post(
            "/api/orders",
            json=order_body(
                items=[{"product_ref": PRODUCT, "quantity": 5, "unit_price": "10.00"}]
            ),
            headers=CUSTOMER_HEADERS,
        )
        order_id = response.json()["order_id"]

        captured = fire(client, order_id, "PaymentCaptured")

        assert captured.status_code == 409
        assert captured.json()["error_code"] == "ERR_ORDER_003"
        order = client.get(f"/api/orders/{order_id}", headers=ADMIN_HEADERS).json()
        assert order["status"] == "stock_conflict"
        assert order["payment_status"] == "refunded"
        listing = client.get(f"/api/orders/{order_id}/refunds", headers=ADMIN_HEADERS).json()
        assert listing["refunded_total"] == "50.00"
        [refund] = listing["refunds"]
        assert refund["status"] == "completed"
        assert refund["reason"] == "stock_conflict"
        assert len(api_gateway.refund_calls) == 1
        assert client.get(f"/api/inventory/stock/{PRODUCT}").json()["total_quantity"] == 1

    def test_only_admin_assigns_courier(self, client: TestClient) -> None:
        order_id = paid_order(client)

        response = client.put(
            f"/api/orders/{order_id}/courier",
            json={"courier_ref": COURIER},
            headers=SELLER_HEADERS,
        )

        assert response.status_code == 403


class TestRefunds:
    def test_seller_refunds_part_of_order(self, client: TestClient) -> None:
        order_id = paid_order(client)

        response = client.post(
            f"/api/orders/{order_id}/refunds",
            json={"amount": "5.00", "reason": "late delivery"},
            headers=SELLER_HEADERS,
        )

        assert response.status_code == 201
        assert response.json()["status"] == "completed"
        listing = client.get(f"/api/orders/{order_id}/refunds", headers=CUSTOMER_HEADERS).json()
        assert listing["refunded_total"] == "5.00"
        assert len(listing["refunds"]) == 1

    def test_over_refund_is_conflict(self, client: TestClient) -> None:
        order_id = paid_order(client)

        response = client.post(
            f"/api/orders/{order_id}/refunds", json={"amount": "25.00"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "ERR_REFUND_001"

    def test_non_positive_amount_is_bad_request(self, client: TestClient) -> None:
        order_id = paid_order(client)

        response = client.post(
            f"/api/orders/{order_id}/refunds", json={"amount": "0"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "ERR_REFUND_002"

    def test_customer_cannot_refund(self, client: TestClient) -> None:
        order_id = paid_order(client)

        response = client.post(
            f"/api/orders/{order_id}/refunds", json={"amount": "5.00"}, headers=CUSTOMER_HEADERS
        )

        assert response.status_code == 403

    def test_declined_refund_is_reported_as_failed(
        self, client: TestClient, api_gateway: FakeGateway
    ) -> None:
        order_id = paid_order(client)
        api_gateway.decline = True

        response = client.post(
            f"/api/orders/{order_id}/refunds", json={"amount": "5.00"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 201
        assert response.json()["status"] == "failed"
        assert response.json()["error_code"] == "card_declined"


class TestReturns:
    def test_return_lifecycle(self, client: TestClient) -> None:
        order_id = paid_order(client)

        created = client.post(
            f"/api/orders/{order_id}/returns",
            json={"reason": "too small", "product_ref": PRODUCT, "quantity": 1},
            headers=CUSTOMER_HEADERS,
        )
        assert created.status_code == 201
        return_id = created.json()["return_request_id"]

        approved = client.post(f"/api/returns/{return_id}/approve", headers=SELLER_HEADERS)
        assert approved.json()["status"] == "approved"
        assert approved.json()["refund_amount"] == "10.00"

        received = client.post(f"/api/returns/{return_id}/receive", headers=SELLER_HEADERS)
        assert received.json()["status"] == "received"

        refund = client.post(f"/api/returns/{return_id}/refund", headers=SELLER_HEADERS)
        assert refund.status_code == 201
        assert refund.json()["amount"] == "10.00"

        final = client.get(f"/api/returns/{return_id}", headers=CUSTOMER_HEADERS)
        assert final.json()["status"] == "refunded"
        listing = client.get(f"/api/orders/{order_id}/returns", headers=CUSTOMER_HEADERS)
        assert [r["return_request_id"] for r in listing.json()] == [return_id]

    def test_only_customers_open_returns(self, client: TestClient) -> None:
        order_id = paid_order(client)

        response = client.post(
            f"/api/orders/{order_id}/returns", json={"reason": "x"}, headers=SELLER_HEADERS
        )

        assert response.status_code == 403

    def test_customer_cannot_approve(self, client: TestClient) -> None:
        order_id = paid_order(client)
        return_id = client.post(
            f"/api/orders/{order_id}/returns", json={"reason": "x"}, headers=CUSTOMER_HEADERS
        ).json()["return_request_id"]

        response = client.post(f"/api/returns/{return_id}/approve", headers=CUSTOMER_HEADERS)

        assert response.status_code == 403

    def test_reject(self, client: TestClient) -> None:
        order_id = paid_order(client)
        return_id = client.post(
            f"/api/orders/{order_id}/returns", json={"reason": "x"}, headers=CUSTOMER_HEADERS
        ).json()["return_request_id"]

        response = client.post(
            f"/api/returns/{return_id}/reject",
            json={"reason": "outside window"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert response.json()["rejected_reason"] == "outside window"
