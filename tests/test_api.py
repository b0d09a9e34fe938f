"""
HTTP tests for the engine endpoints.
"""

from fastapi.testclient import TestClient

from tests.conftest import make_token


class TestAuthentication:
    """Bearer token handling."""

    def test_missing_token(self, client: TestClient):
        response = client.get("/api/orders")

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "AuthenticationError"

    def test_token_signed_with_wrong_secret(self, client: TestClient):
        token = make_token("customer-1", secret="another-secret-that-is-long-enough-for-hs256")
        response = client.get("/api/orders", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_customer_cannot_use_staff_endpoint(self, client: TestClient, customer_headers):
        response = client.get("/api/receipts", headers=customer_headers)

        assert response.status_code == 403
        assert response.json()["error"]["type"] == "UnauthorizedError"


class TestUploadIntent:
    """Upload intent outcomes over HTTP."""

    def test_allocated(self, client: TestClient, customer_headers, make_subscription):
        subscription = make_subscription(images_used=10)

        response = client.post("/api/upload-intent", json={"image_count": 5}, headers=customer_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["outcome"] == "allocated"
        assert body["subscription_id"] == str(subscription.id)
        assert body["remaining"] == 45

    def test_quota_exceeded(self, client: TestClient, customer_headers, make_subscription, session):
        subscription = make_subscription(images_limit=60, images_used=58)

        response = client.post("/api/upload-intent", json={"image_count": 3}, headers=customer_headers)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["type"] == "QuotaExceededError"
        assert error["details"]["remaining_images"] == 2
        session.refresh(subscription)
        assert subscription.images_used == 58

    def test_requires_selection_then_explicit_pick(self, client: TestClient, customer_headers, make_subscription):
        make_subscription()
        make_subscription()

        response = client.post("/api/upload-intent", json={"image_count": 2}, headers=customer_headers)
        body = response.json()
        assert body["outcome"] == "requires_selection"
        assert len(body["candidates"]) == 2

        chosen = body["candidates"][1]["subscription_id"]
        response = client.post(
            "/api/upload-intent",
            json={"image_count": 2, "subscription_id": chosen},
            headers=customer_headers,
        )
        assert response.json()["outcome"] == "allocated"
        assert response.json()["subscription_id"] == chosen

    def test_no_quota(self, client: TestClient, customer_headers, plan):
        response = client.post("/api/upload-intent", json={"image_count": 4}, headers=customer_headers)

        body = response.json()
        assert body["outcome"] == "no_quota"
        assert body["pay_per_image"]["total"] == "10.00"

    def test_invalid_body(self, client: TestClient, customer_headers, plan):
        response = client.post("/api/upload-intent", json={"image_count": 0}, headers=customer_headers)

        assert response.status_code == 422
        assert "image_count" in response.json()["error"]["details"]["fields"]

    def test_staff_cannot_upload(self, client: TestClient, staff_headers, plan):
        response = client.post("/api/upload-intent", json={"image_count": 1}, headers=staff_headers)

        assert response.status_code == 403


class TestOrderWorkflow:
    """The order and payment workflow end to end."""

    def _create_funded_order(self, client, headers):
        allocation = client.post("/api/upload-intent", json={"image_count": 3}, headers=headers).json()
        response = client.post(
            "/api/orders",
            json={
                "image_count": 3,
                "subscription_id": allocation["subscription_id"],
                "reservation_id": allocation["reservation_id"],
            },
            headers=headers,
        )
        assert response.status_code == 201
        return response.json()

    def _transition(self, client, order_id, trigger, headers, **extra):
        return client.post(
            f"/api/orders/{order_id}/transition",
            json={"trigger": trigger, **extra},
            headers=headers,
        )

    def test_full_workflow(self, client: TestClient, customer_headers, staff_headers, make_subscription):
        make_subscription()
        order = self._create_funded_order(client, customer_headers)
        order_id = order["id"]
        assert order["status"] == "pending"

        assert self._transition(client, order_id, "approve", staff_headers).json()["status"] == "approved"
        assert self._transition(client, order_id, "mark_sent", staff_headers).json()["status"] == "sent"
        assert self._transition(client, order_id, "view", customer_headers).json()["status"] == "viewed"
        assert self._transition(client, order_id, "report_payment", customer_headers).json()["status"] == "payment_made"

        receipt = client.post(
            f"/api/orders/{order_id}/receipts",
            json={"proof_ref": "receipts/1.jpg", "amount": "30.00", "payment_method": "bank_transfer"},
            headers=customer_headers,
        )
        assert receipt.status_code == 201
        receipt_id = receipt.json()["id"]

        assert client.get(f"/api/receipts/{receipt_id}", headers=customer_headers).status_code == 200
        assert client.get(f"/api/receipts/{receipt_id}", headers=staff_headers).json()["status"] == "submitted"

        queue = client.get("/api/receipts?status=submitted", headers=staff_headers).json()
        assert queue["total"] == 1

        confirmed = client.post(f"/api/receipts/{receipt_id}/confirm", json={}, headers=staff_headers)
        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "confirmed"

        assert client.get(f"/api/orders/{order_id}", headers=customer_headers).json()["status"] == "payment_confirmed"
        assert self._transition(client, order_id, "mark_paid", staff_headers).json()["status"] == "paid"

        history = client.get(f"/api/orders/{order_id}/history", headers=customer_headers).json()
        assert [event["trigger"] for event in history] == [
            "create", "approve", "mark_sent", "view", "report_payment", "confirm_payment", "mark_paid",
        ]

        terminal = self._transition(client, order_id, "reject", staff_headers)
        assert terminal.status_code == 409
        assert terminal.json()["error"]["type"] == "InvalidTransitionError"

    def test_actor_role_mismatch(self, client: TestClient, customer_headers, make_subscription):
        make_subscription()
        order = self._create_funded_order(client, customer_headers)

        response = self._transition(client, order["id"], "approve", customer_headers, actor_role="staff")

        assert response.status_code == 403

    def test_invalid_transition(self, client: TestClient, customer_headers, staff_headers, make_subscription):
        make_subscription()
        order = self._create_funded_order(client, customer_headers)

        response = self._transition(client, order["id"], "mark_sent", staff_headers)

        assert response.status_code == 409
        assert response.json()["error"]["details"]["current_status"] == "pending"

    def test_customers_only_see_own_orders(
        self, client: TestClient, customer_headers, other_customer_headers, make_subscription
    ):
        make_subscription()
        order = self._create_funded_order(client, customer_headers)

        assert client.get(f"/api/orders/{order['id']}", headers=other_customer_headers).status_code == 404
        assert client.get("/api/orders", headers=other_customer_headers).json()["total"] == 0
        assert client.get("/api/orders?customer_id=customer-1", headers=other_customer_headers).status_code == 403

    def test_pay_per_image_order_priced_server_side(self, client: TestClient, customer_headers, plan):
        response = client.post("/api/orders", json={"image_count": 4, "price": "10.00"}, headers=customer_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["funding"] == "pay_per_image"
        assert float(body["price"]) == 10.0

    def test_pay_per_image_price_mismatch(self, client: TestClient, customer_headers, plan):
        response = client.post("/api/orders", json={"image_count": 4, "price": "1.00"}, headers=customer_headers)

        assert response.status_code == 422

    def test_receipt_before_payment_reported(self, client: TestClient, customer_headers, make_subscription):
        make_subscription()
        order = self._create_funded_order(client, customer_headers)

        response = client.post(f"/api/orders/{order['id']}/receipts", json={}, headers=customer_headers)

        assert response.status_code == 409
        assert response.json()["error"]["type"] == "OrderNotPaymentReadyError"

    def test_receipt_hidden_from_other_customers(
        self, client: TestClient, customer_headers, other_customer_headers, staff_headers, make_subscription
    ):
        make_subscription()
        order = self._create_funded_order(client, customer_headers)
        for trigger, headers in [
            ("approve", staff_headers),
            ("mark_sent", staff_headers),
            ("view", customer_headers),
            ("report_payment", customer_headers),
        ]:
            self._transition(client, order["id"], trigger, headers)
        receipt = client.post(f"/api/orders/{order['id']}/receipts", json={}, headers=customer_headers).json()

        response = client.get(f"/api/receipts/{receipt['id']}", headers=other_customer_headers)

        assert response.status_code == 404

    def test_proof_store_unavailable(self, client: TestClient, customer_headers, staff_headers, make_subscription):
        from apps.api.main import app
        from apps.api.routers.orders import get_proof_store
        from apps.api.services import IProofStore

        class DownProofStore(IProofStore):
            def exists(self, proof_ref):
                raise TimeoutError("storage timed out")

        make_subscription()
        order = self._create_funded_order(client, customer_headers)
        for trigger, headers in [
            ("approve", staff_headers),
            ("mark_sent", staff_headers),
            ("view", customer_headers),
            ("report_payment", customer_headers),
        ]:
            self._transition(client, order["id"], trigger, headers)

        app.dependency_overrides[get_proof_store] = lambda: DownProofStore()
        response = client.post(
            f"/api/orders/{order['id']}/receipts",
            json={"proof_ref": "receipts/1.jpg"},
            headers=customer_headers,
        )

        assert response.status_code == 503
        assert response.json()["error"]["details"]["service"] == "proof store"


class TestSubscriptionsAndDeliverables:
    """Staff-managed records."""

    def test_staff_opens_subscription(self, client: TestClient, staff_headers, customer_headers, plan):
        response = client.post(
            "/api/subscriptions",
            json={"customer_id": "customer-1", "plan_id": "silver", "billing_cycle": "quarterly"},
            headers=staff_headers,
        )
        assert response.status_code == 201
        assert response.json()["images_limit"] == 60

        listing = client.get("/api/subscriptions", headers=customer_headers).json()
        assert listing["total"] == 1
        assert listing["subscriptions"][0]["eligible"] is True

    def test_plans_listing(self, client: TestClient, customer_headers, plan):
        response = client.get("/api/plans", headers=customer_headers)

        assert [p["id"] for p in response.json()] == ["silver"]

    def test_reset_and_status(self, client: TestClient, staff_headers, make_subscription):
        subscription = make_subscription(images_used=60)

        reset = client.post(f"/api/subscriptions/{subscription.id}/reset-usage", json={}, headers=staff_headers)
        assert reset.json()["images_used"] == 0

        expired = client.post(
            f"/api/subscriptions/{subscription.id}/status",
            json={"status": "expired"},
            headers=staff_headers,
        )
        assert expired.json()["status"] == "expired"
        assert expired.json()["eligible"] is False

    def test_deliverables(self, client: TestClient, staff_headers, customer_headers, other_customer_headers):
        created = client.post(
            "/api/deliverables",
            json={
                "customer_id": "customer-1",
                "title": "Photos",
                "link": "https://example.com/set.zip",
                "description": "Retouched set",
            },
            headers=staff_headers,
        )
        assert created.status_code == 201

        own = client.get("/api/deliverables", headers=customer_headers).json()
        assert [d["title"] for d in own] == ["Photos"]
        assert client.get("/api/deliverables", headers=other_customer_headers).json() == []

        deliverable_url = f"/api/deliverables/{created.json()['id']}"
        assert client.get(deliverable_url, headers=customer_headers).json()["title"] == "Photos"
        assert client.get(deliverable_url, headers=other_customer_headers).status_code == 404

        removed = client.delete(f"/api/deliverables/{created.json()['id']}", headers=staff_headers)
        assert removed.status_code == 204

    def test_deliverable_bad_link(self, client: TestClient, staff_headers):
        response = client.post(
            "/api/deliverables",
            json={"customer_id": "customer-1", "title": "Photos", "link": "not-a-url", "description": "desc"},
            headers=staff_headers,
        )

        assert response.status_code == 422
        assert "link" in response.json()["error"]["details"]["fields"]


class TestOperationalEndpoints:

    def test_healthz(self, client: TestClient):
        assert client.get("/healthz").json()["status"] == "healthy"

    def test_metrics(self, client: TestClient):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "retouch_order_transitions_total" in response.text
