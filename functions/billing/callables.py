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
"""
Bodies of the Stripe callables exposed from main.py.

main.py resolves the caller and the Stripe client; these functions validate
the payload, call Stripe and shape the camelCase result for the app.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Mapping, Optional

import stripe
from firebase_functions import https_fn

from billing.entitlement_store import EntitlementStore
from billing.stripe_client import StripeBillingClient
from shared.api import BillingPortalResult, CheckoutSessionResult
from shared.json_utils import convert_keys

logger = logging.getLogger(__name__)


def _invalid_argument(message: str) -> https_fn.HttpsError:
    return https_fn.HttpsError(https_fn.FunctionsErrorCode.INVALID_ARGUMENT, message)


def _provider_error(action: str, error: stripe.StripeError) -> https_fn.HttpsError:
    message = getattr(error, "user_message", None) or str(error)
    logger.error("Error creating %s: %s", action, message)
    return https_fn.HttpsError(
        https_fn.FunctionsErrorCode.INTERNAL, f"Unable to create {action}: {message}"
    )


def _parse_credits(value: Any) -> int:
    if isinstance(value, bool):
        raise _invalid_argument("credits must be a positive integer")
    try:
        credits = int(value)
    except (TypeError, ValueError) as e:
        raise _invalid_argument("credits must be a positive integer") from e
    if credits <= 0 or credits != float(value):
        raise _invalid_argument("credits must be a positive integer")
    return credits


def create_checkout_session(
    billing_client: StripeBillingClient,
    user_id: str,
    email: Optional[str],
    data: Mapping[str, Any],
) -> dict:
    """Starts a pay-per-report Checkout. Returns {sessionId, url}."""
    price_id = data.get("priceId")
    raw_credits = data.get("credits")
    if not price_id or not raw_credits:
        raise _invalid_argument("priceId and credits are required")
    credits = _parse_credits(raw_credits)

    try:
        session = billing_client.create_credits_checkout(
            user_id=user_id, email=email, price_id=price_id, credits=credits
        )
    except stripe.StripeError as e:
        raise _provider_error("checkout session", e)

    result = CheckoutSessionResult(session_id=session.id, url=session.url)
    return convert_keys(asdict(result), "snake_to_camel")


def create_subscription(
    billing_client: StripeBillingClient,
    user_id: str,
    email: Optional[str],
    data: Mapping[str, Any],
) -> dict:
    """Starts a monthly subscription Checkout. Returns {sessionId, url}."""
    price_id = data.get("priceId")
    if not price_id:
        raise _invalid_argument("priceId is required")

    try:
        session = billing_client.create_subscription_checkout(
            user_id=user_id, email=email, price_id=price_id
        )
    except stripe.StripeError as e:
        raise _provider_error("subscription", e)

    result = CheckoutSessionResult(session_id=session.id, url=session.url)
    return convert_keys(asdict(result), "snake_to_camel")


def create_billing_portal_session(
    billing_client: StripeBillingClient, store: EntitlementStore, user_id: str
) -> dict:
    """Opens the Stripe Billing Portal for the caller's customer. Returns {url}."""
    info = store.get_subscription_info(user_id)
    customer_id = info.stripe_customer_id if info else None
    if not customer_id:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.NOT_FOUND, "No active subscription found"
        )

    try:
        session = billing_client.create_billing_portal_session(customer_id)
    except stripe.StripeError as e:
        raise _provider_error("billing portal session", e)

    return convert_keys(asdict(BillingPortalResult(url=session.url)), "snake_to_camel")
