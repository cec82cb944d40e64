"""
API tests for payment endpoints: callback verification, webhooks, payment
reads and statistics, and the payment sub-resource of an order.
"""

from uuid import uuid4

import pytest

from storefront.services.payments.gateway import (
    GatewayConnectionError,
    GatewayEvent,
    WebhookVerificationError,
)
from storefront.services.payments.service import EVENT_PAYMENT_SUCCEEDED
from storefront.services.payments.signature import compute_callback_signature

ORDERS_URL = "/api/v1/orders"
PAYMENTS_URL = "/api/v1/payments"
VERIFY_URL = "/api/v1/payments/verify"
WEBHOOK_URL = "/api/v1/payments/webhook"


@pytest.fixture
def place_order(client, customer_headers):
    """Create an order through the API and return the response body."""

    async def create(payment_method: str = "online") -> dict:
        response = await client.post(
            ORDERS_URL,
            json={
                "items": [{"product_id": 1, "quantity": 2}],
                "payment_method": payment_method,
            },
            headers=customer_headers,
        )
        assert response.status_code == 201
        return response.json()

    return create


# ============================================================================
# Callback Verification
# ============================================================================


class TestVerifyEndpoint:
    @pytest.mark.asyncio
    async def test_valid_callback_confirms(self, client, place_order, settings):
        created = await place_order()
        order_ref = created["payment"]["gateway_order_ref"]

        response = await client.post(
            VERIFY_URL,
            json={
                "order_ref": order_ref,
                "payment_ref": "ch_123",
                "signature": compute_callback_signature(
                    settings.payment_signing_secret, order_ref, "ch_123"
                ),
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["order_id"] == created["order"]["id"]
        assert body["order_status"] == "confirmed"
        assert body["payment"]["status"] == "completed"
        assert body["payment"]["verified_at"] is not None

    @pytest.mark.asyncio
    async def test_tampered_callback_is_opaque(self, client, place_order, customer_headers):
        created = await place_order()
        order_ref = created["payment"]["gateway_order_ref"]

        response = await client.post(
            VERIFY_URL,
            json={"order_ref": order_ref, "payment_ref": "ch_123", "signature": "f" * 64},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == {
            "message": "Payment verification failed",
            "code": "verification_failed",
        }

        payment = await client.get(
            f"{ORDERS_URL}/{created['order']['id']}/payment", headers=customer_headers
        )
        assert payment.json()["status"] == "failed"

    @pytest.mark.asyncio
    async def test_empty_callback_rejected(self, client):
        response = await client.post(VERIFY_URL, json={})

        assert response.status_code == 400


# ============================================================================
# Webhooks
# ============================================================================


class TestWebhookEndpoint:
    @pytest.mark.asyncio
    async def test_webhook_completes_payment(self, client, place_order, mock_gateway):
        created = await place_order()
        mock_gateway.parse_webhook.return_value = GatewayEvent(
            event_id="evt_1",
            event_type=EVENT_PAYMENT_SUCCEEDED,
            external_order_ref=created["payment"]["gateway_order_ref"],
            external_payment_ref="ch_1",
            amount_minor=30000,
        )

        response = await client.post(
            WEBHOOK_URL,
            content=b'{"id": "evt_1"}',
            headers={"stripe-signature": "t=1,v1=abc"},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "completed"
        assert response.json()["handled"] is True
        mock_gateway.parse_webhook.assert_called_once_with(b'{"id": "evt_1"}', "t=1,v1=abc")

    @pytest.mark.asyncio
    async def test_webhook_bad_signature(self, client, mock_gateway):
        mock_gateway.parse_webhook.side_effect = WebhookVerificationError(
            "Webhook signature verification failed", code="INVALID_SIGNATURE"
        )

        response = await client.post(WEBHOOK_URL, content=b"{}")

        assert response.status_code == 400
        mock_gateway.parse_webhook.assert_called_once_with(b"{}", "")


# ============================================================================
# Order Payment Sub-resource
# ============================================================================


class TestOrderPaymentEndpoints:
    @pytest.mark.asyncio
    async def test_retry_after_gateway_outage(
        self, client, place_order, customer_headers, mock_gateway
    ):
        issue_intent = mock_gateway.create_intent.side_effect
        mock_gateway.create_intent.side_effect = GatewayConnectionError("down", retryable=True)
        created = await place_order()
        assert created["payment"] is None
        mock_gateway.create_intent.side_effect = issue_intent

        response = await client.post(
            f"{ORDERS_URL}/{created['order']['id']}/payment", headers=customer_headers
        )

        assert response.status_code == 200
        assert response.json()["payment"]["status"] == "pending"
        assert response.json()["client_secret"] is not None

    @pytest.mark.asyncio
    async def test_payment_not_found(self, client, customer_headers):
        response = await client.get(f"{ORDERS_URL}/{uuid4()}/payment", headers=customer_headers)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_confirm_cash_collection_admin_only(
        self, client, place_order, customer_headers, admin_headers
    ):
        created = await place_order("cod")
        url = f"{ORDERS_URL}/{created['order']['id']}/payment/confirm"

        forbidden = await client.post(url, headers=customer_headers)
        confirmed = await client.post(
            url, json={"note": "Collected by courier"}, headers=admin_headers
        )

        assert forbidden.status_code == 403
        assert forbidden.json()["detail"]["code"] == "FORBIDDEN"
        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_confirm_online_payment_conflict(self, client, place_order, admin_headers):
        created = await place_order()

        response = await client.post(
            f"{ORDERS_URL}/{created['order']['id']}/payment/confirm", headers=admin_headers
        )

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "invalid_payment_state"

    @pytest.mark.asyncio
    async def test_late_callback_for_cancelled_order_conflict(
        self, client, place_order, customer_headers, settings
    ):
        created = await place_order()
        order_ref = created["payment"]["gateway_order_ref"]
        await client.post(
            VERIFY_URL,
            json={"order_ref": order_ref, "payment_ref": "ch_1", "signature": "0" * 64},
        )
        await client.post(
            f"{ORDERS_URL}/{created['order']['id']}/status",
            json={"status": "cancelled"},
            headers=customer_headers,
        )

        response = await client.post(
            VERIFY_URL,
            json={
                "order_ref": order_ref,
                "payment_ref": "ch_1",
                "signature": compute_callback_signature(
                    settings.payment_signing_secret, order_ref, "ch_1"
                ),
            },
        )

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "invalid_payment_state"
        assert detail["reconciliation_required"] is True


# ============================================================================
# Payment Reads And Statistics
# ============================================================================


class TestPaymentResource:
    @pytest.mark.asyncio
    async def test_methods_are_public(self, client):
        response = await client.get(f"{PAYMENTS_URL}/methods")

        assert response.status_code == 200
        methods = {m["method"]: m for m in response.json()}
        assert set(methods) == {"online", "cod"}
        assert methods["cod"]["enabled"] is True
        assert methods["cod"]["min_amount"] == "100.00"
        assert methods["online"]["min_amount"] is None

    @pytest.mark.asyncio
    async def test_get_payment_by_id(
        self, client, place_order, customer_headers, auth_headers
    ):
        created = await place_order()
        url = f"{PAYMENTS_URL}/{created['payment']['id']}"

        owned = await client.get(url, headers=customer_headers)
        other = await client.get(url, headers=auth_headers(uuid4()))
        missing = await client.get(f"{PAYMENTS_URL}/{uuid4()}", headers=customer_headers)

        assert owned.status_code == 200
        assert owned.json()["gateway_order_ref"] == created["payment"]["gateway_order_ref"]
        assert other.status_code == 403
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "payment_not_found"

    @pytest.mark.asyncio
    async def test_stats_admin_only(self, client, place_order, customer_headers, admin_headers):
        await place_order("cod")
        await place_order()

        forbidden = await client.get(f"{PAYMENTS_URL}/stats", headers=customer_headers)
        response = await client.get(f"{PAYMENTS_URL}/stats", headers=admin_headers)
        cod_only = await client.get(
            f"{PAYMENTS_URL}/stats", params={"method": "cod"}, headers=admin_headers
        )

        assert forbidden.status_code == 403
        assert response.status_code == 200
        rows = {(r["method"], r["status"]): r for r in response.json()}
        assert set(rows) == {("cod", "pending"), ("online", "pending")}
        assert rows[("cod", "pending")]["count"] == 1
        assert rows[("cod", "pending")]["total_amount"] == "300.00"
        assert [r["method"] for r in cod_only.json()] == ["cod"]
