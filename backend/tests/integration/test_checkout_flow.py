from __future__ import annotations

import dataclasses
from unittest.mock import patch

import httpx
import pytest
import stripe

CREATED = 1_700_000_000


def _intent(user_id, status="succeeded", pi_id="pi_123", **extra) -> dict:
    data = {
        "id": pi_id,
        "status": status,
        "amount": 14900,
        "currency": "usd",
        "created": CREATED,
        "client_secret": f"{pi_id}_secret_abc",
        "description": "External Membership Payment",
        "metadata": {"membership_type": "external", "user_id": str(user_id)},
        "latest_charge": {"receipt_url": "https://pay.stripe.com/receipts/r_1"},
    }
    data.update(extra)
    return data


CHECKOUT = {"amount": 149, "membership_type": "external", "currency": "usd"}


@pytest.mark.integration
class TestCheckout:
    def test_creates_intent_and_pending_record(self, client, member):
        uid = member["user"]["id"]
        with patch("stripe.Customer.create", return_value={"id": "cus_1"}) as create_customer, patch(
            "stripe.PaymentIntent.create", return_value=_intent(uid, status="requires_payment_method")
        ) as create_intent:
            resp = client.post("/checkout", headers=member["headers"], json=CHECKOUT)

        assert resp.status_code == 200, resp.text
        assert resp.json() == {
            "client_secret": "pi_123_secret_abc",
            "payment_intent_id": "pi_123",
            "status": "requires_payment_method",
        }
        create_customer.assert_called_once()
        kwargs = create_intent.call_args.kwargs
        assert kwargs["amount"] == 14900
        assert kwargs["customer"] == "cus_1"
        assert kwargs["metadata"]["user_id"] == str(uid)
        assert kwargs["automatic_payment_methods"] == {"enabled": True}

        details = client.get("/user", headers=member["headers"]).json()["membership_details"]
        assert details["payment_intent_id"] == "pi_123"
        assert details["customer_id"] == "cus_1"
        assert details["has_membership"] is False

    def test_customer_is_reused(self, client, member):
        uid = member["user"]["id"]
        with patch("stripe.Customer.create", return_value={"id": "cus_1"}) as create_customer, patch(
            "stripe.PaymentIntent.create", return_value=_intent(uid, status="requires_payment_method")
        ):
            client.post("/checkout", headers=member["headers"], json=CHECKOUT)
            client.post("/checkout", headers=member["headers"], json=CHECKOUT)
        assert create_customer.call_count == 1

    def test_saved_card_confirms_immediately(self, client, member):
        uid = member["user"]["id"]
        with patch("stripe.Customer.create", return_value={"id": "cus_1"}), patch(
            "stripe.PaymentMethod.retrieve", return_value={"id": "pm_1", "customer": "cus_1"}
        ), patch("stripe.PaymentIntent.create", return_value=_intent(uid)) as create_intent:
            resp = client.post("/checkout", headers=member["headers"], json={**CHECKOUT, "payment_method_id": "pm_1"})

        assert resp.status_code == 200
        kwargs = create_intent.call_args.kwargs
        assert kwargs["payment_method"] == "pm_1"
        assert kwargs["confirm"] is True
        assert kwargs["return_url"] == "http://testserver/success"

    def test_foreign_card_rejected(self, client, member):
        with patch("stripe.Customer.create", return_value={"id": "cus_1"}), patch(
            "stripe.PaymentMethod.retrieve", return_value={"id": "pm_1", "customer": "cus_other"}
        ), patch("stripe.PaymentIntent.create") as create_intent:
            resp = client.post("/checkout", headers=member["headers"], json={**CHECKOUT, "payment_method_id": "pm_1"})

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid payment method"
        create_intent.assert_not_called()

    @pytest.mark.parametrize(
        "payload",
        [
            {**CHECKOUT, "currency": "xyz"},
            {**CHECKOUT, "amount": 0},
            {**CHECKOUT, "membership_type": "gold"},
        ],
    )
    def test_bad_payload(self, client, member, payload):
        assert client.post("/checkout", headers=member["headers"], json=payload).status_code == 422

    def test_provider_down(self, client, member):
        with patch("stripe.Customer.create", side_effect=stripe.APIConnectionError("network down")):
            resp = client.post("/checkout", headers=member["headers"], json=CHECKOUT)
        assert resp.status_code == 502
        assert resp.json()["error_code"] == "PAYMENT_PROVIDER_ERROR"

    def test_requires_login(self, client):
        assert client.post("/checkout", json=CHECKOUT).status_code == 401


@pytest.mark.integration
class TestBillingDisabled:
    @pytest.fixture
    def settings(self, settings):
        return dataclasses.replace(settings, billing_enabled=False)

    def test_checkout_unavailable(self, client, member):
        resp = client.post("/checkout", headers=member["headers"], json=CHECKOUT)
        assert resp.status_code == 503
        assert resp.json()["error_code"] == "BILLING_DISABLED"

    def test_webhook_unavailable(self, client):
        resp = client.post("/billing/stripe/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=x"})
        assert resp.status_code == 503


@pytest.mark.integration
class TestStripeNotConfigured:
    @pytest.fixture
    def settings(self, settings):
        return dataclasses.replace(settings, stripe_secret_key="")

    def test_checkout_reports_configuration(self, client, member):
        resp = client.post("/checkout", headers=member["headers"], json=CHECKOUT)
        assert resp.status_code == 500
        assert resp.json()["error_code"] == "NOT_CONFIGURED"


@pytest.mark.integration
class TestVerify:
    def test_not_succeeded(self, client, member):
        uid = member["user"]["id"]
        with patch("stripe.PaymentIntent.retrieve", return_value=_intent(uid, status="processing")):
            resp = client.get("/membership/verify", headers=member["headers"], params={"payment_intent": "pi_123"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "PAYMENT_NOT_SUCCEEDED"

    def test_unknown_intent(self, client, member):
        err = stripe.InvalidRequestError("No such payment_intent", "id")
        with patch("stripe.PaymentIntent.retrieve", side_effect=err):
            resp = client.get("/membership/verify", headers=member["headers"], params={"payment_intent": "pi_x"})
        assert resp.status_code == 404

    def test_someone_elses_payment(self, client, member):
        with patch("stripe.PaymentIntent.retrieve", return_value=_intent(9999)):
            resp = client.get("/membership/verify", headers=member["headers"], params={"payment_intent": "pi_123"})
        assert resp.status_code == 403

    def test_success_activates_membership(self, client, member):
        uid = member["user"]["id"]
        with patch("stripe.PaymentIntent.retrieve", return_value=_intent(uid)):
            first = client.get("/membership/verify", headers=member["headers"], params={"payment_intent": "pi_123"})
            second = client.get("/membership/verify", headers=member["headers"], params={"payment_intent": "pi_123"})

        assert first.json() == {"success": True, "message": "Membership activated successfully"}
        assert second.json() == {"success": True, "message": "Membership already active"}

        details = client.get("/user", headers=member["headers"]).json()["membership_details"]
        assert details["has_membership"] is True
        assert details["membership_type"] == "external"
        assert details["price"] == 149.0
        assert details["receipt_url"] == "https://pay.stripe.com/receipts/r_1"
        assert details["current_period_end"].startswith("2024-11-14")

    def test_recent_payment_is_active(self, client, member, clock):
        uid = member["user"]["id"]
        paid = _intent(uid, created=int(clock.now) - 86400)
        with patch("stripe.PaymentIntent.retrieve", return_value=paid):
            client.get("/membership/verify", headers=member["headers"], params={"payment_intent": "pi_123"})

        details = client.get("/user", headers=member["headers"]).json()["membership_details"]
        assert details["has_membership"] is True
        assert details["active"] is True

    def test_lapsed_term_is_not_active(self, client, member):
        uid = member["user"]["id"]
        # paid in Nov 2023, so the yearly term is long over
        with patch("stripe.PaymentIntent.retrieve", return_value=_intent(uid)):
            client.get("/membership/verify", headers=member["headers"], params={"payment_intent": "pi_123"})

        details = client.get("/user", headers=member["headers"]).json()["membership_details"]
        assert details["has_membership"] is True
        assert details["active"] is False

    def test_no_payment_is_not_active(self, client, member):
        details = client.get("/user", headers=member["headers"]).json()["membership_details"]
        assert details["active"] is False


@pytest.mark.integration
class TestPaymentLookup:
    def test_payment_intent_details(self, client, member):
        uid = member["user"]["id"]
        with patch("stripe.PaymentIntent.retrieve", return_value=_intent(uid)):
            resp = client.get("/payment-intent", headers=member["headers"], params={"payment_intent": "pi_123"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["amount"] == 149.0
        assert data["status"] == "succeeded"
        assert data["metadata"]["membership_type"] == "external"

    def test_payment_intent_of_other_user_hidden(self, client, member):
        with patch("stripe.PaymentIntent.retrieve", return_value=_intent(9999)):
            resp = client.get("/payment-intent", headers=member["headers"], params={"payment_intent": "pi_123"})
        assert resp.status_code == 404

    def _pay(self, client, member):
        uid = member["user"]["id"]
        with patch("stripe.Customer.create", return_value={"id": "cus_1"}), patch(
            "stripe.PaymentIntent.create", return_value=_intent(uid, status="requires_payment_method")
        ):
            client.post("/checkout", headers=member["headers"], json=CHECKOUT)

    def test_receipt_download(self, client, member):
        self._pay(client, member)
        uid = member["user"]["id"]
        receipt = httpx.Response(
            200,
            text="<html>receipt</html>",
            request=httpx.Request("GET", "https://pay.stripe.com/receipts/r_1"),
        )
        with patch("stripe.PaymentIntent.retrieve", return_value=_intent(uid)) as retrieve, patch(
            "portal.routers.membership.httpx.get", return_value=receipt
        ):
            resp = client.get("/receipt", headers=member["headers"], params={"payment_intent": "pi_123"})

        assert resp.status_code == 200
        assert resp.text == "<html>receipt</html>"
        assert resp.headers["content-disposition"] == 'attachment; filename="invoice-pi_123.html"'
        assert retrieve.call_args.kwargs["expand"] == ["latest_charge"]

    def test_receipt_fetch_failure(self, client, member):
        self._pay(client, member)
        uid = member["user"]["id"]
        with patch("stripe.PaymentIntent.retrieve", return_value=_intent(uid)), patch(
            "portal.routers.membership.httpx.get", side_effect=httpx.ConnectError("boom")
        ):
            resp = client.get("/receipt", headers=member["headers"], params={"payment_intent": "pi_123"})
        assert resp.status_code == 502

    def test_receipt_for_other_payment(self, client, member):
        self._pay(client, member)
        resp = client.get("/receipt", headers=member["headers"], params={"payment_intent": "pi_other"})
        assert resp.status_code == 403


@pytest.mark.integration
class TestSubscription:
    def test_creates_subscription(self, client, member):
        subscription = {
            "id": "sub_1",
            "status": "incomplete",
            "latest_invoice": {"payment_intent": {"id": "pi_sub", "client_secret": "pi_sub_secret"}},
        }
        with patch("stripe.Customer.create", return_value={"id": "cus_1"}), patch(
            "stripe.Product.retrieve", return_value={"id": "membership_internal"}
        ), patch("stripe.Price.list", return_value={"data": []}), patch(
            "stripe.Price.create", return_value={"id": "price_1"}
        ), patch("stripe.Subscription.create", return_value=subscription), patch(
            "stripe.PaymentIntent.modify"
        ) as modify:
            resp = client.post(
                "/membership/subscription",
                headers=member["headers"],
                json={"membership_type": "internal", "price": 99},
            )

        assert resp.status_code == 200, resp.text
        assert resp.json() == {"subscription_id": "sub_1", "client_secret": "pi_sub_secret", "customer_id": "cus_1"}
        assert modify.call_args.kwargs["metadata"]["subscription_id"] == "sub_1"

        details = client.get("/user", headers=member["headers"]).json()["membership_details"]
        assert details["subscription_status"] == "incomplete"
        assert details["membership_type"] == "internal"
