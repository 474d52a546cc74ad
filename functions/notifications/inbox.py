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
Push delivery for messages written to users/{uid}/inbox/{msgId}.

Tokens are registered by the app under users/{uid}/profile/info.fcmTokens.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from dacite import Config, from_dict
from firebase_admin import messaging
from google.cloud.firestore_v1 import SERVER_TIMESTAMP, Increment

from shared.firebase_constants import (
    META_COLLECTION,
    META_DOC,
    PROFILE_COLLECTION,
    PROFILE_INFO_DOC,
    USERS_COLLECTION,
)
from shared.json_utils import convert_keys
from shared.types import InboxMessage

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New notification"
DEFAULT_BODY = "You have a new message"
DEFAULT_MESSAGE_TYPE = "alert"


def parse_inbox_message(data: Optional[dict]) -> InboxMessage:
    return from_dict(
        data_class=InboxMessage,
        data=convert_keys(data or {}, "camel_to_snake"),
        config=Config(check_types=False),
    )


def registered_tokens(profile: Optional[dict]) -> List[str]:
    """Returns the non-empty FCM tokens from a profile/info doc."""
    tokens = (profile or {}).get("fcmTokens")
    if not isinstance(tokens, list):
        return []
    return [token for token in tokens if isinstance(token, str) and token]


def build_push_message(
    tokens: List[str], message: InboxMessage
) -> messaging.MulticastMessage:
    """
    Composes the multicast for an inbox message.

    FCM data payloads only carry strings, so every data value is stringified
    with an empty default.
    """
    return messaging.MulticastMessage(
        tokens=tokens,
        notification=messaging.Notification(
            title=message.title or DEFAULT_TITLE,
            body=message.body or message.subtitle or DEFAULT_BODY,
        ),
        data={
            "type": str(message.type or DEFAULT_MESSAGE_TYPE),
            "schemaId": str(message.schema_id or ""),
            "reportId": str(message.report_id or ""),
        },
    )


def notify_inbox_message(db: Any, user_id: str, message_ref: Any, data: dict) -> int:
    """
    Stamps the message, bumps the unread counter and pushes to every token.

    Returns:
        The number of tokens FCM accepted. Send failures are logged and never
        raised, since a missed push must not fail the trigger.
    """
    message = parse_inbox_message(data)

    if not message.created_at:
        message_ref.update({"createdAt": SERVER_TIMESTAMP})

    user_ref = db.collection(USERS_COLLECTION).document(user_id)
    user_ref.collection(META_COLLECTION).document(META_DOC).set(
        {"inboxUnread": Increment(1)}, merge=True
    )

    profile = user_ref.collection(PROFILE_COLLECTION).document(PROFILE_INFO_DOC).get()
    tokens = registered_tokens(profile.to_dict() if profile.exists else None)
    if not tokens:
        return 0

    try:
        response = messaging.send_each_for_multicast(
            build_push_message(tokens, message)
        )
    except Exception as e:
        logger.warning("Push to user %s failed: %s", user_id, e)
        return 0

    if response.failure_count:
        logger.info(
            "Push to user %s: %d sent, %d failed",
            user_id,
            response.success_count,
            response.failure_count,
        )
    return response.success_count
