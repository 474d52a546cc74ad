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
Mirrors Stripe webhook payloads onto the per-user entitlement record.

Each handler takes the event's data.object as a plain dict. Events that
cannot be matched to a user are logged and dropped; raising is reserved for
failures Stripe should redeliver.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from google.cloud.firestore_v1 import SERVER_TIMESTAMP

from billing.entitlement_store import EntitlementStore
from billing.stripe_client import StripeBillingClient, subscription_from_stripe
from shared.config import get_settings
from shared.types import (
    PurchaseRecord,
    PurchaseType,
    SubscriptionInfo,
    SubscriptionStatus,
    has_access_for,
)

logger = logging.getLogger(__name__)

PAID = "paid"


def handle_checkout_completed(
    session: Mapping[str, Any],
    store: EntitlementStore,
    billing_client: StripeBillingClient,
) -> None:
    """
    Grants what a completed Checkout session paid for.

    - Ignores sessions without metadata.userId or not yet paid (async payment
      methods complete later with payment_status "unpaid").
    - metadata.type "credits": adds metadata.credits report credits and a
      purchase history entry, once per payment.
    - metadata.type "subscription": fetches the subscription from Stripe and
      activates it, converting any trial record.
    """
    metadata = session.get("metadata") or {}
    user_id = metadata.get("userId")
    purchase_type = metadata.get("type")

    if not user_id:
        logger.error("No userId in metadata of checkout session %s", session.get("id"))
        return

    if session.get("payment_status") != PAID:
        logger.info(
            "Payment not completed for session %s (status %s)",
            session.get("id"),
            session.get("payment_status"),
        )
        return

    if purchase_type == PurchaseType.CREDITS:
        _grant_credits(user_id, session, store)
    elif purchase_type == PurchaseType.SUBSCRIPTION:
        _activate_subscription(user_id, session, store, billing_client)
    else:
        logger.warning(
            "Unknown purchase type %r on checkout session %s",
            purchase_type,
            session.get("id"),
        )


def _grant_credits(
    user_id: str, session: Mapping[str, Any], store: EntitlementStore
) -> None:
    metadata = session.get("metadata") or {}
    try:
        credits = int(metadata["credits"])
    except (KeyError, TypeError, ValueError):
        # Redelivery cannot fix bad metadata, so acknowledge and drop.
        logger.error(
            "Invalid credits %r on checkout session %s",
            metadata.get("credits"),
            session.get("id"),
        )
        return

    purchase = PurchaseRecord(
        credits=credits,
        # Fully discounted sessions have no payment intent.
        payment_id=session.get("payment_intent") or session["id"],
        purchased_at=datetime.now(timezone.utc).isoformat(),
        amount=(session.get("amount_total") or 0) / 100,
        currency=session.get("currency"),
    )

    if store.add_credits(user_id, purchase):
        logger.info("Added %d credits to user %s", credits, user_id)
    else:
        logger.info(
            "Payment %s already credited to user %s, skipping",
            purchase.payment_id,
            user_id,
        )


def _activate_subscription(
    user_id: str,
    session: Mapping[str, Any],
    store: EntitlementStore,
    billing_client: StripeBillingClient,
) -> None:
    subscription = billing_client.retrieve_subscription(session["subscription"])
    subscription_type = get_settings().subscription_type

    info = SubscriptionInfo(
        has_access=True,
        status=SubscriptionStatus.ACTIVE.value,
        subscription_type=subscription_type,
        stripe_subscription_id=session["subscription"],
        stripe_customer_id=session.get("customer") or subscription.customer,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        cancel_at_period_end=subscription.cancel_at_period_end,
    )
    converted = store.activate_subscription(user_id, info, subscription_type)

    logger.info(
        "Activated subscription %s for user %s (trial converted: %s), renews %s",
        info.stripe_subscription_id,
        user_id,
        converted,
        _isoformat(subscription.current_period_end),
    )


def handle_subscription_cancelled(
    subscription: Mapping[str, Any], store: EntitlementStore
) -> None:
    """Revokes access when Stripe deletes the subscription."""
    user_id = store.find_user_by_subscription(subscription["id"])
    if not user_id:
        logger.error("No user found for subscription %s", subscription["id"])
        return

    _update_info(
        user_id,
        store,
        {
            "status": SubscriptionStatus.CANCELLED.value,
            "has_access": False,
            "cancelled_at": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        },
    )
    logger.info("Cancelled subscription %s for user %s", subscription["id"], user_id)


def handle_subscription_updated(
    subscription: Mapping[str, Any], store: EntitlementStore
) -> None:
    """Mirrors the provider's status and billing period onto the record."""
    user_id = store.find_user_by_subscription(subscription["id"])
    if not user_id:
        logger.warning("No user found for updated subscription %s", subscription["id"])
        return

    current = subscription_from_stripe(subscription)
    _update_info(
        user_id,
        store,
        {
            "status": current.status,
            "has_access": has_access_for(current.status),
            "current_period_start": current.current_period_start,
            "current_period_end": current.current_period_end,
            "cancel_at_period_end": current.cancel_at_period_end,
            "updated_at": SERVER_TIMESTAMP,
        },
    )
    logger.info(
        "Updated subscription %s for user %s: %s, renews %s",
        current.id,
        user_id,
        current.status,
        _isoformat(current.current_period_end),
    )


def handle_payment_failed(invoice: Mapping[str, Any], store: EntitlementStore) -> None:
    """Suspends access while an invoice is unpaid."""
    customer_id = invoice.get("customer")
    user_id = store.find_user_by_customer(customer_id) if customer_id else None
    if not user_id:
        logger.warning("No user found for customer %s", customer_id)
        return

    _update_info(
        user_id,
        store,
        {
            "status": SubscriptionStatus.PAST_DUE.value,
            "has_access": False,
            "last_payment_failed": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        },
    )
    logger.info("Payment failed for user %s", user_id)


def _update_info(user_id: str, store: EntitlementStore, fields: dict) -> None:
    if not store.update_subscription_info(user_id, fields):
        logger.error("Subscription info missing for user %s", user_id)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
