# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
# Standard library imports
import os
import unittest
from types import SimpleNamespace
from unittest.mock import patch, MagicMock

# Third-party library imports
from functions_framework import create_app
from firebase_functions import https_fn, params

# Local application imports
# This patch must be applied before importing 'main'
with patch("firebase_admin.initialize_app"):
    import main
from billing.entitlement_store import InMemoryEntitlementStore
from billing.webhook_test import SECRET, event_payload, sign

MAIN_SOURCE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "main.py")


def _load_function(target: str):
    """Loads main.py into sys.modules["main"] and returns a client for target."""
    # Each load re-executes main.py, which redeclares its SecretParams.
    params._params.clear()
    with patch("firebase_admin.initialize_app"):
        return create_app(target, MAIN_SOURCE).test_client()


class TestMainStripeWebhook(unittest.TestCase):

    def setUp(self):
        self.webhook_client = _load_function("stripe_webhook")

        # Arrange: Bind the secret, store and Stripe client of the loaded module.
        self.store = InMemoryEntitlementStore()
        self.billing_client = MagicMock()
        patchers = [
            patch("main.STRIPE_WEBHOOK_SECRET", MagicMock(value=SECRET)),
            patch("main._entitlement_store", return_value=self.store),
            patch("main._billing_client", return_value=self.billing_client),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)

    def _post(self, payload: bytes, signature: str | None = None):
        headers = {}
        if signature is not None:
            headers["Stripe-Signature"] = signature
        return self.webhook_client.post(
            "/", data=payload, headers=headers, content_type="application/json"
        )

    def test_credit_purchase_is_reconciled(self):
        # Arrange
        payload = event_payload(
            "checkout.session.completed",
            {
                "id": "cs_1",
                "metadata": {"userId": "u1", "type": "credits", "credits": "10"},
                "payment_status": "paid",
                "amount_total": 999,
                "currency": "usd",
                "payment_intent": "pi_1",
            },
        )

        # Act
        response = self._post(payload, sign(payload))

        # Assert
        self.assertEqual(
            response.status_code,
            200,
            f"Request failed with status {response.status_code}. Body: {response.get_data(as_text=True)}",
        )
        self.assertEqual(response.get_json(), {"received": True})
        credits = self.store.get_credits("u1")
        self.assertEqual(credits.report_credits, 10)
        self.assertEqual(credits.purchase_history[0].payment_id, "pi_1")
        self.assertAlmostEqual(credits.purchase_history[0].amount, 9.99)

    def test_redelivered_event_is_credited_once(self):
        payload = event_payload(
            "checkout.session.completed",
            {
                "id": "cs_1",
                "metadata": {"userId": "u1", "type": "credits", "credits": "10"},
                "payment_status": "paid",
                "amount_total": 999,
                "currency": "usd",
                "payment_intent": "pi_1",
            },
        )

        self.assertEqual(self._post(payload, sign(payload)).status_code, 200)
        self.assertEqual(self._post(payload, sign(payload)).status_code, 200)

        self.assertEqual(self.store.get_credits("u1").report_credits, 10)

    def test_invalid_signature_is_rejected(self):
        payload = event_payload(
            "checkout.session.completed",
            {"metadata": {"userId": "u1", "type": "credits", "credits": "10"}},
        )

        response = self._post(payload, sign(payload, secret="whsec_wrong"))

        self.assertEqual(response.status_code, 400)
        self.assertTrue(response.get_data(as_text=True).startswith("Webhook Error:"))
        self.assertEqual(self.store.docs, {})

    def test_missing_signature_is_rejected(self):
        payload = event_payload("invoice.payment_failed", {"customer": "cus_1"})

        response = self._post(payload)

        self.assertEqual(response.status_code, 400)

    def test_unknown_event_type_is_acknowledged(self):
        payload = event_payload("customer.created", {"id": "cus_1"})

        with patch("main.logger") as logger_mock:
            response = self._post(payload, sign(payload))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"received": True})
        self.assertEqual(self.store.docs, {})
        logger_mock.info.assert_called_once()
        self.assertIn("Ignored webhook event", logger_mock.info.call_args.args[0])

    def test_cancellation_for_unknown_subscription_is_acknowledged(self):
        payload = event_payload("customer.subscription.deleted", {"id": "sub_unknown"})

        response = self._post(payload, sign(payload))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.store.docs, {})

    def test_subscription_update_is_reconciled(self):
        self.store.put(
            "u1",
            "info",
            {"hasAccess": True, "status": "active", "stripeSubscriptionId": "sub_1"},
        )
        payload = event_payload(
            "customer.subscription.updated", {"id": "sub_1", "status": "past_due"}
        )

        response = self._post(payload, sign(payload))

        self.assertEqual(response.status_code, 200)
        info = self.store.get_subscription_info("u1")
        self.assertEqual(info.status, "past_due")
        self.assertFalse(info.has_access)

    def test_handler_error_returns_server_error(self):
        failing_store = MagicMock()
        failing_store.find_user_by_customer.side_effect = RuntimeError("Firestore down")
        payload = event_payload("invoice.payment_failed", {"customer": "cus_1"})

        with patch("main._entitlement_store", return_value=failing_store):
            response = self._post(payload, sign(payload))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_data(as_text=True), "Webhook handler error")

    def test_non_post_is_rejected(self):
        response = self.webhook_client.get("/")

        self.assertEqual(response.status_code, 405)


class TestMainCallablesAuth(unittest.TestCase):

    def setUp(self):
        self.clients = {
            name: _load_function(name)
            for name in (
                "create_checkout_session",
                "create_subscription",
                "create_billing_portal_session",
            )
        }

    def test_unauthenticated_calls_are_rejected(self):
        payload = {"priceId": "price_1", "credits": 10}
        for name, client in self.clients.items():
            with self.subTest(function=name):
                response = client.post("/", json={"data": payload})

                self.assertEqual(response.status_code, 401)
                response_data = response.get_json()
                self.assertEqual(response_data["error"]["status"], "UNAUTHENTICATED")
                self.assertIn(
                    "User must be authenticated", response_data["error"]["message"]
                )


class TestMainHelpers(unittest.TestCase):

    def test_caller_returns_uid_and_email(self):
        req = SimpleNamespace(
            auth=SimpleNamespace(uid="u1", token={"email": "a@b.com"}), data={}
        )

        self.assertEqual(main._caller(req), ("u1", "a@b.com"))

    def test_caller_without_auth_raises(self):
        with self.assertRaises(https_fn.HttpsError) as ctx:
            main._caller(SimpleNamespace(auth=None, data={}))

        self.assertEqual(
            ctx.exception.code, https_fn.FunctionsErrorCode.UNAUTHENTICATED
        )

    def test_payload_must_be_an_object(self):
        self.assertEqual(main._payload(SimpleNamespace(data=None)), {})
        with self.assertRaises(https_fn.HttpsError):
            main._payload(SimpleNamespace(data=["price_1"]))


if __name__ == "__main__":
    unittest.main()
