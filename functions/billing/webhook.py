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
"""Stripe webhook verification and event routing."""

from __future__ import annotations

import json
import logging
from typing import Optional

import stripe
from dacite import Config, DaciteError, from_dict

from billing import reconcile
from billing.entitlement_store import EntitlementStore
from billing.stripe_client import StripeBillingClient
from shared.api import WebhookEvent
from shared.types import WebhookEventType

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SEC = 300


class WebhookVerificationError(Exception):
    """The request is not an authentic, well-formed Stripe event."""


def verify_event(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SEC,
) -> WebhookEvent:
    """
    Checks the Stripe-Signature header against the raw request body.

    The signature covers the exact bytes Stripe sent, so the body must not be
    parsed and re-serialised before this call.

    Raises:
        WebhookVerificationError: If the header is missing, the signature or
            timestamp is invalid, or the body is not a Stripe event.
    """
    if not signature_header:
        raise WebhookVerificationError("Missing Stripe-Signature header")
    if not secret:
        raise WebhookVerificationError("Webhook secret is not configured")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise WebhookVerificationError(f"Payload is not UTF-8: {e}") from e

    try:
        stripe.WebhookSignature.verify_header(body, signature_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise WebhookVerificationError(str(e)) from e

    try:
        data = json.loads(body)
    except ValueError as e:
        raise WebhookVerificationError(f"Invalid payload: {e}") from e
    if not isinstance(data, dict):
        raise WebhookVerificationError("Invalid payload: expected a JSON object")

    try:
        return from_dict(
            data_class=WebhookEvent, data=data, config=Config(check_types=False)
        )
    except DaciteError as e:
        raise WebhookVerificationError(f"Malformed event: {e}") from e


def dispatch_event(
    event: WebhookEvent,
    store: EntitlementStore,
    billing_client: StripeBillingClient,
) -> bool:
    """
    Routes a verified event to its reconciliation handler.

    Returns:
        True if the event type is handled, False if it was ignored. Handler
        exceptions propagate so the caller can ask Stripe to redeliver.
    """
    obj = event.object
    if event.type == WebhookEventType.CHECKOUT_SESSION_COMPLETED:
        reconcile.handle_checkout_completed(obj, store, billing_client)
    elif event.type == WebhookEventType.SUBSCRIPTION_DELETED:
        reconcile.handle_subscription_cancelled(obj, store)
    elif event.type == WebhookEventType.SUBSCRIPTION_UPDATED:
        reconcile.handle_subscription_updated(obj, store)
    elif event.type == WebhookEventType.INVOICE_PAYMENT_FAILED:
        reconcile.handle_payment_failed(obj, store)
    else:
        logger.info("Unhandled event type: %s", event.type)
        return False
    return True
