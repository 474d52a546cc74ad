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
"""Thin wrapper over the Stripe API used by the callables and webhook."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import stripe

from shared.config import Settings, get_settings
from shared.types import ProviderSubscription, PurchaseType

logger = logging.getLogger(__name__)


def from_epoch(seconds: Optional[int]) -> Optional[datetime]:
    """Converts Stripe epoch seconds to an aware UTC datetime."""
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def subscription_from_stripe(obj: Mapping[str, Any]) -> ProviderSubscription:
    """
    Builds a ProviderSubscription from a Stripe Subscription payload.

    Newer Stripe API versions report the billing period on each subscription
    item instead of the subscription, so fall back to the first item.
    """
    period_start = obj.get("current_period_start")
    period_end = obj.get("current_period_end")
    if period_start is None or period_end is None:
        items = (obj.get("items") or {}).get("data") or []
        if items:
            period_start = period_start or items[0].get("current_period_start")
            period_end = period_end or items[0].get("current_period_end")

    return ProviderSubscription(
        id=obj["id"],
        status=obj.get("status") or "",
        customer=obj.get("customer"),
        current_period_start=from_epoch(period_start),
        current_period_end=from_epoch(period_end),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
    )


class StripeBillingClient:
    """Wraps the Stripe calls this backend makes with a per-call API key."""

    def __init__(self, api_key: str, settings: Settings | None = None):
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY is not configured")
        self.api_key = api_key
        self.settings = settings or get_settings()

    def create_credits_checkout(
        self, *, user_id: str, email: Optional[str], price_id: str, credits: int
    ) -> stripe.checkout.Session:
        """Creates a one-off payment Checkout session for report credits."""
        session = stripe.checkout.Session.create(
            api_key=self.api_key,
            payment_method_types=["card"],
            mode="payment",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=self.settings.checkout_success_url,
            cancel_url=self.settings.checkout_cancel_url,
            metadata={
                "userId": user_id,
                "credits": str(credits),
                "type": PurchaseType.CREDITS.value,
            },
            customer_email=email,
        )
        logger.info("Checkout session %s created for user %s", session.id, user_id)
        return session

    def create_subscription_checkout(
        self, *, user_id: str, email: Optional[str], price_id: str
    ) -> stripe.checkout.Session:
        """Creates a subscription-mode Checkout session for the monthly plan."""
        session = stripe.checkout.Session.create(
            api_key=self.api_key,
            payment_method_types=["card"],
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=self.settings.checkout_success_url,
            cancel_url=self.settings.checkout_cancel_url,
            metadata={
                "userId": user_id,
                "type": PurchaseType.SUBSCRIPTION.value,
            },
            customer_email=email,
        )
        logger.info(
            "Subscription checkout session %s created for user %s", session.id, user_id
        )
        return session

    def create_billing_portal_session(
        self, customer_id: str
    ) -> stripe.billing_portal.Session:
        return stripe.billing_portal.Session.create(
            api_key=self.api_key,
            customer=customer_id,
            return_url=self.settings.billing_portal_return_url,
        )

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        subscription = stripe.Subscription.retrieve(
            subscription_id, api_key=self.api_key
        )
        return subscription_from_stripe(subscription.to_dict())
