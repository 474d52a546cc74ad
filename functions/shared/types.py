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

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, List, Optional


class SubscriptionStatus(StrEnum):
    """Statuses this backend writes itself. Stripe may report others."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"


class TrialStatus(StrEnum):
    TRIAL = "trial"
    CONVERTED = "converted"


class PurchaseType(StrEnum):
    """Value of metadata.type on the checkout sessions we create."""

    CREDITS = "credits"
    SUBSCRIPTION = "subscription"


class WebhookEventType(StrEnum):
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


def has_access_for(status: str) -> bool:
    """Access is granted only while the subscription is active."""
    return status == SubscriptionStatus.ACTIVE


@dataclass
class PurchaseRecord:
    """One entry of the append-only purchaseHistory list."""

    credits: int
    payment_id: str
    purchased_at: str  # ISO-8601, UTC
    amount: float
    currency: Optional[str] = None


@dataclass
class CreditsInfo:
    report_credits: int = 0
    purchase_history: List[PurchaseRecord] = field(default_factory=list)
    updated_at: Any = None


@dataclass
class SubscriptionInfo:
    """Schema of users/{uid}/subscription/info."""

    has_access: bool
    status: str
    subscription_type: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    created_at: Any = None  # Firestore timestamp
    updated_at: Any = None  # Firestore timestamp
    cancelled_at: Any = None
    last_payment_failed: Any = None


@dataclass
class TrialInfo:
    status: str
    converted_at: Any = None
    converted_to: Optional[str] = None


@dataclass
class ProviderSubscription:
    """The subset of a Stripe Subscription object reconciliation needs."""

    id: str
    status: str
    customer: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


@dataclass
class InboxMessage:
    """A message doc created under users/{uid}/inbox."""

    title: Optional[str] = None
    body: Optional[str] = None
    subtitle: Optional[str] = None
    type: Optional[str] = None
    schema_id: Optional[str] = None
    report_id: Optional[str] = None
    created_at: Any = None
