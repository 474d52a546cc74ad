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
Persistence for the per-user entitlement record.

Layout under users/{uid}/subscription:
  credits  reportCredits, purchaseHistory[], updatedAt
  info     hasAccess, status, stripeSubscriptionId, stripeCustomerId, ...
  trial    status, convertedAt, convertedTo

Stripe ids are resolved back to a user through explicit index docs in
stripe_subscriptions/{id} and stripe_customers/{id}, written when a
subscription is activated. Index docs are never removed, so a hit only
counts while the user's subscription/info still carries that id.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from dacite import Config, from_dict
from google.api_core import exceptions
from google.cloud.firestore_v1 import (
    SERVER_TIMESTAMP,
    ArrayUnion,
    Increment,
    transactional,
)
from google.cloud.firestore_v1.base_query import FieldFilter

from shared.firebase_constants import (
    CREDITS_DOC,
    STRIPE_CUSTOMERS_INDEX,
    STRIPE_SUBSCRIPTIONS_INDEX,
    SUBSCRIPTION_COLLECTION,
    SUBSCRIPTION_INFO_DOC,
    TRIAL_DOC,
    USERS_COLLECTION,
)
from shared.json_utils import convert_keys
from shared.types import (
    CreditsInfo,
    PurchaseRecord,
    SubscriptionInfo,
    TrialInfo,
    TrialStatus,
)

logger = logging.getLogger(__name__)

_DACITE_CONFIG = Config(check_types=False)


class EntitlementStore(Protocol):
    """Operations the reconciliation handlers and callables need."""

    def add_credits(self, user_id: str, purchase: PurchaseRecord) -> bool:
        """Applies a credit purchase once per payment id. False if a replay."""
        ...

    def activate_subscription(
        self, user_id: str, info: SubscriptionInfo, converted_to: str
    ) -> bool:
        """Writes subscription info, converts the trial and indexes the ids.

        Returns True if a trial record was converted.
        """
        ...

    def update_subscription_info(self, user_id: str, fields: dict) -> bool:
        """Updates snake_case fields of subscription/info. False if missing."""
        ...

    def find_user_by_subscription(self, subscription_id: str) -> Optional[str]:
        ...

    def find_user_by_customer(self, customer_id: str) -> Optional[str]:
        ...

    def get_credits(self, user_id: str) -> CreditsInfo:
        ...

    def get_subscription_info(self, user_id: str) -> Optional[SubscriptionInfo]:
        ...

    def get_trial_info(self, user_id: str) -> Optional[TrialInfo]:
        ...


def _purchase_key(entry: dict) -> Optional[str]:
    return entry.get("paymentId")


def _is_replay(credits_doc: Optional[dict], purchase: PurchaseRecord) -> bool:
    history = (credits_doc or {}).get("purchaseHistory") or []
    return any(_purchase_key(entry) == purchase.payment_id for entry in history)


def _info_document(info: SubscriptionInfo) -> dict:
    # Set after asdict(), which deep-copies values and would clone the sentinel.
    data = convert_keys(asdict(info), "snake_to_camel")
    data["createdAt"] = SERVER_TIMESTAMP
    data["updatedAt"] = SERVER_TIMESTAMP
    return data


def _trial_conversion(converted_to: str, converted_at: Any) -> dict:
    return {
        "status": TrialStatus.CONVERTED.value,
        "convertedAt": converted_at,
        "convertedTo": converted_to,
    }


def _to_dataclass(data_class, data: Optional[dict]):
    if data is None:
        return None
    return from_dict(
        data_class=data_class,
        data=convert_keys(data, "camel_to_snake"),
        config=_DACITE_CONFIG,
    )


def _to_credits_info(data: Optional[dict]) -> CreditsInfo:
    return _to_dataclass(CreditsInfo, data) or CreditsInfo()


def _holder(
    user_id: str, field_name: str, key: str, info: Optional[dict]
) -> Optional[str]:
    """Returns user_id if its subscription/info still carries key."""
    if (info or {}).get(field_name) == key:
        return user_id
    logger.info(
        "Index for %s %s points at user %s, who no longer holds it",
        field_name,
        key,
        user_id,
    )
    return None


class FirestoreEntitlementStore:
    """EntitlementStore backed by a Firestore client."""

    def __init__(self, db):
        self.db = db

    def _subscription_doc(self, user_id: str, doc_id: str):
        return (
            self.db.collection(USERS_COLLECTION)
            .document(user_id)
            .collection(SUBSCRIPTION_COLLECTION)
            .document(doc_id)
        )

    def _index_doc(self, index: str, key: str):
        return self.db.collection(index).document(key)

    def add_credits(self, user_id: str, purchase: PurchaseRecord) -> bool:
        credits_ref = self._subscription_doc(user_id, CREDITS_DOC)
        entry = convert_keys(asdict(purchase), "snake_to_camel")

        @transactional
        def _add_credits_transaction(transaction, doc_ref):
            snapshot = doc_ref.get(transaction=transaction)
            if snapshot.exists and _is_replay(snapshot.to_dict(), purchase):
                return False
            transaction.set(
                doc_ref,
                {
                    "reportCredits": Increment(purchase.credits),
                    "purchaseHistory": ArrayUnion([entry]),
                    "updatedAt": SERVER_TIMESTAMP,
                },
                merge=True,
            )
            return True

        return _add_credits_transaction(self.db.transaction(), credits_ref)

    def activate_subscription(
        self, user_id: str, info: SubscriptionInfo, converted_to: str
    ) -> bool:
        info_ref = self._subscription_doc(user_id, SUBSCRIPTION_INFO_DOC)
        trial_ref = self._subscription_doc(user_id, TRIAL_DOC)
        info_data = _info_document(info)

        @transactional
        def _activate_transaction(transaction):
            # Firestore transactions require all reads before any writes.
            trial = trial_ref.get(transaction=transaction)

            transaction.set(info_ref, info_data)
            if trial.exists:
                transaction.update(
                    trial_ref, _trial_conversion(converted_to, SERVER_TIMESTAMP)
                )
            if info.stripe_subscription_id:
                transaction.set(
                    self._index_doc(
                        STRIPE_SUBSCRIPTIONS_INDEX, info.stripe_subscription_id
                    ),
                    {"userId": user_id},
                )
            if info.stripe_customer_id:
                transaction.set(
                    self._index_doc(STRIPE_CUSTOMERS_INDEX, info.stripe_customer_id),
                    {"userId": user_id},
                )
            return trial.exists

        return _activate_transaction(self.db.transaction())

    def update_subscription_info(self, user_id: str, fields: dict) -> bool:
        info_ref = self._subscription_doc(user_id, SUBSCRIPTION_INFO_DOC)
        try:
            info_ref.update(convert_keys(fields, "snake_to_camel"))
        except exceptions.NotFound:
            return False
        return True

    def _find_user(self, index: str, field_name: str, key: str) -> Optional[str]:
        index_doc = self._index_doc(index, key).get()
        if index_doc.exists:
            user_id = index_doc.get("userId")
            info = self._subscription_doc(user_id, SUBSCRIPTION_INFO_DOC).get()
            current = info.to_dict() if info.exists else None
            return _holder(user_id, field_name, key, current)

        # Records activated before the index docs existed only carry the id on
        # subscription/info, so fall back to a collection group query.
        query = (
            self.db.collection_group(SUBSCRIPTION_COLLECTION)
            .where(filter=FieldFilter(field_name, "==", key))
            .limit(1)
        )
        for doc in query.stream():
            return doc.reference.parent.parent.id
        return None

    def find_user_by_subscription(self, subscription_id: str) -> Optional[str]:
        return self._find_user(
            STRIPE_SUBSCRIPTIONS_INDEX, "stripeSubscriptionId", subscription_id
        )

    def find_user_by_customer(self, customer_id: str) -> Optional[str]:
        return self._find_user(STRIPE_CUSTOMERS_INDEX, "stripeCustomerId", customer_id)

    def get_credits(self, user_id: str) -> CreditsInfo:
        doc = self._subscription_doc(user_id, CREDITS_DOC).get()
        return _to_credits_info(doc.to_dict() if doc.exists else None)

    def get_subscription_info(self, user_id: str) -> Optional[SubscriptionInfo]:
        doc = self._subscription_doc(user_id, SUBSCRIPTION_INFO_DOC).get()
        return _to_dataclass(SubscriptionInfo, doc.to_dict() if doc.exists else None)

    def get_trial_info(self, user_id: str) -> Optional[TrialInfo]:
        doc = self._subscription_doc(user_id, TRIAL_DOC).get()
        return _to_dataclass(TrialInfo, doc.to_dict() if doc.exists else None)


class InMemoryEntitlementStore:
    """Dictionary-backed EntitlementStore for tests and local runs.

    Documents are kept in their Firestore (camelCase) shape and
    SERVER_TIMESTAMP is resolved to the current time on write.
    """

    def __init__(self):
        self.docs: Dict[tuple[str, str], dict] = {}
        self.subscription_index: Dict[str, str] = {}
        self.customer_index: Dict[str, str] = {}

    def reset(self) -> None:
        self.docs.clear()
        self.subscription_index.clear()
        self.customer_index.clear()

    def put(self, user_id: str, doc_id: str, data: dict) -> None:
        """Seeds a camelCase document, as a client or older deploy would have."""
        self.docs[(user_id, doc_id)] = self._resolve(data)

    def doc(self, user_id: str, doc_id: str) -> Optional[dict]:
        data = self.docs.get((user_id, doc_id))
        return copy.deepcopy(data) if data is not None else None

    @staticmethod
    def _resolve(data: dict) -> dict:
        now = datetime.now(timezone.utc)
        return {
            key: now if value is SERVER_TIMESTAMP else copy.deepcopy(value)
            for key, value in data.items()
        }

    def add_credits(self, user_id: str, purchase: PurchaseRecord) -> bool:
        key = (user_id, CREDITS_DOC)
        current = self.docs.get(key)
        if _is_replay(current, purchase):
            return False
        current = current or {}
        history = list(current.get("purchaseHistory") or [])
        history.append(convert_keys(asdict(purchase), "snake_to_camel"))
        current.update(
            self._resolve(
                {
                    "reportCredits": (current.get("reportCredits") or 0)
                    + purchase.credits,
                    "purchaseHistory": history,
                    "updatedAt": SERVER_TIMESTAMP,
                }
            )
        )
        self.docs[key] = current
        return True

    def activate_subscription(
        self, user_id: str, info: SubscriptionInfo, converted_to: str
    ) -> bool:
        self.docs[(user_id, SUBSCRIPTION_INFO_DOC)] = self._resolve(
            _info_document(info)
        )
        trial = self.docs.get((user_id, TRIAL_DOC))
        if trial is not None:
            trial.update(
                self._resolve(_trial_conversion(converted_to, SERVER_TIMESTAMP))
            )
        if info.stripe_subscription_id:
            self.subscription_index[info.stripe_subscription_id] = user_id
        if info.stripe_customer_id:
            self.customer_index[info.stripe_customer_id] = user_id
        return trial is not None

    def update_subscription_info(self, user_id: str, fields: dict) -> bool:
        info = self.docs.get((user_id, SUBSCRIPTION_INFO_DOC))
        if info is None:
            return False
        info.update(self._resolve(convert_keys(fields, "snake_to_camel")))
        return True

    def _find_user(
        self, index: Dict[str, str], field_name: str, key: str
    ) -> Optional[str]:
        if key in index:
            user_id = index[key]
            current = self.docs.get((user_id, SUBSCRIPTION_INFO_DOC))
            return _holder(user_id, field_name, key, current)
        for (user_id, _), data in self.docs.items():
            if data.get(field_name) == key:
                return user_id
        return None

    def find_user_by_subscription(self, subscription_id: str) -> Optional[str]:
        return self._find_user(
            self.subscription_index, "stripeSubscriptionId", subscription_id
        )

    def find_user_by_customer(self, customer_id: str) -> Optional[str]:
        return self._find_user(self.customer_index, "stripeCustomerId", customer_id)

    def get_credits(self, user_id: str) -> CreditsInfo:
        return _to_credits_info(self.doc(user_id, CREDITS_DOC))

    def get_subscription_info(self, user_id: str) -> Optional[SubscriptionInfo]:
        return _to_dataclass(SubscriptionInfo, self.doc(user_id, SUBSCRIPTION_INFO_DOC))

    def get_trial_info(self, user_id: str) -> Optional[TrialInfo]:
        return _to_dataclass(TrialInfo, self.doc(user_id, TRIAL_DOC))
