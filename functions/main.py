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

# Cloud functions for the WeldQAI backend - Stripe billing + inbox push notifications.
#
# This file containing Python cloud functions must be named main.py.
# See https://cloud.google.com/run/docs/write-functions#python for more info.

# Standard library imports
import json
from dataclasses import asdict
from typing import Any, Optional

# Third-party library imports
from firebase_admin import initialize_app, firestore
from firebase_functions import https_fn, logger, options
from firebase_functions.firestore_fn import (
    on_document_created,
    Event,
    DocumentSnapshot,
)
from firebase_functions.params import SecretParam

# Local application imports
from billing import callables, webhook
from billing.entitlement_store import EntitlementStore, FirestoreEntitlementStore
from billing.stripe_client import StripeBillingClient
from notifications import inbox
from shared.api import WebhookAck
from shared.config import get_settings
from shared.firebase_constants import INBOX_COLLECTION, USERS_COLLECTION

STRIPE_SECRET_KEY = SecretParam("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = SecretParam("STRIPE_WEBHOOK_SECRET")

_settings = get_settings()
options.set_global_options(
    region=_settings.region, max_instances=_settings.max_instances
)

initialize_app()


def _entitlement_store() -> EntitlementStore:
    return FirestoreEntitlementStore(firestore.client())


def _billing_client() -> StripeBillingClient:
    return StripeBillingClient(STRIPE_SECRET_KEY.value)


def _caller(req: https_fn.CallableRequest) -> tuple[str, Optional[str]]:
    """Returns (uid, email) of the signed-in caller."""
    if req.auth is None:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.UNAUTHENTICATED, "User must be authenticated"
        )
    token = req.auth.token or {}
    return req.auth.uid, token.get("email")


def _payload(req: https_fn.CallableRequest) -> dict[str, Any]:
    if req.data is None:
        return {}
    if not isinstance(req.data, dict):
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Request data must be an object.",
        )
    return req.data


@on_document_created(
    document=USERS_COLLECTION + "/{uid}/" + INBOX_COLLECTION + "/{msgId}"
)
def notify_on_inbox_create(event: Event[Optional[DocumentSnapshot]]) -> None:
    """
    Push notifies the user when a message lands in their inbox.
    Also increments users/{uid}/meta/meta.inboxUnread.
    """
    if event.data is None:
        return

    uid = event.params["uid"]
    sent = inbox.notify_inbox_message(
        firestore.client(), uid, event.data.reference, event.data.to_dict() or {}
    )
    logger.info(f"Inbox message {event.params['msgId']} for {uid} pushed to {sent} devices")


@https_fn.on_call(secrets=[STRIPE_SECRET_KEY])
def create_checkout_session(req: https_fn.CallableRequest) -> dict:
    """
    Creates a Stripe Checkout session for a pay-per-report credit pack.

    Args:
        req (https_fn.CallableRequest): Authenticated request with priceId and credits.

    Returns:
        {"sessionId": ..., "url": ...}
    """
    user_id, email = _caller(req)
    result = callables.create_checkout_session(
        _billing_client(), user_id, email, _payload(req)
    )
    logger.info(f"Checkout session created for user {user_id}")
    return result


@https_fn.on_call(secrets=[STRIPE_SECRET_KEY])
def create_subscription(req: https_fn.CallableRequest) -> dict:
    """
    Creates a Stripe Checkout session for the monthly subscription.

    Args:
        req (https_fn.CallableRequest): Authenticated request with priceId.

    Returns:
        {"sessionId": ..., "url": ...}
    """
    user_id, email = _caller(req)
    return callables.create_subscription(
        _billing_client(), user_id, email, _payload(req)
    )


@https_fn.on_call(secrets=[STRIPE_SECRET_KEY])
def create_billing_portal_session(req: https_fn.CallableRequest) -> dict:
    """Lets a subscriber manage their subscription in the Stripe Billing Portal."""
    user_id, _ = _caller(req)
    return callables.create_billing_portal_session(
        _billing_client(), _entitlement_store(), user_id
    )


@https_fn.on_request(secrets=[STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET])
def stripe_webhook(req: https_fn.Request) -> https_fn.Response:
    """
    Receives Stripe events and reconciles them onto the user's entitlements.

    Responds 400 when the signature does not verify, 500 when a handler fails
    (Stripe then redelivers) and 200 otherwise, including for event types we
    don't handle.
    """
    if req.method != "POST":
        return https_fn.Response("Method not allowed", status=405)

    try:
        event = webhook.verify_event(
            req.get_data(),
            req.headers.get("Stripe-Signature"),
            STRIPE_WEBHOOK_SECRET.value,
            tolerance=get_settings().webhook_tolerance_sec,
        )
    except webhook.WebhookVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        return https_fn.Response(f"Webhook Error: {e}", status=400)

    try:
        handled = webhook.dispatch_event(
            event, _entitlement_store(), _billing_client()
        )
    except Exception as e:
        logger.error(f"Error handling webhook event {event.id} ({event.type}): {e}")
        return https_fn.Response("Webhook handler error", status=500)

    if handled:
        logger.info(f"Processed webhook event {event.id} ({event.type})")
    else:
        logger.info(f"Ignored webhook event {event.id} ({event.type})")

    return https_fn.Response(
        json.dumps(asdict(WebhookAck())), status=200, mimetype="application/json"
    )
