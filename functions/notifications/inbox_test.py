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

import unittest
from unittest.mock import MagicMock, patch

from google.cloud.firestore_v1 import SERVER_TIMESTAMP, Increment

from notifications import inbox


def _mock_db(profile: dict | None) -> MagicMock:
    db = MagicMock()
    user_ref = db.collection.return_value.document.return_value
    snapshot = MagicMock()
    snapshot.exists = profile is not None
    snapshot.to_dict.return_value = profile
    user_ref.collection.return_value.document.return_value.get.return_value = snapshot
    return db


class BuildPushMessageTest(unittest.TestCase):

    def test_uses_message_fields(self):
        message = inbox.parse_inbox_message(
            {
                "title": "New Alert",
                "body": "Weld #A12 rejected",
                "type": "chat",
                "schemaId": "visual_inspection",
                "reportId": "abc123",
            }
        )

        push = inbox.build_push_message(["t1", "t2"], message)

        self.assertEqual(push.tokens, ["t1", "t2"])
        self.assertEqual(push.notification.title, "New Alert")
        self.assertEqual(push.notification.body, "Weld #A12 rejected")
        self.assertEqual(
            push.data,
            {"type": "chat", "schemaId": "visual_inspection", "reportId": "abc123"},
        )

    def test_defaults(self):
        push = inbox.build_push_message(["t1"], inbox.parse_inbox_message({}))

        self.assertEqual(push.notification.title, "New notification")
        self.assertEqual(push.notification.body, "You have a new message")
        self.assertEqual(push.data, {"type": "alert", "schemaId": "", "reportId": ""})

    def test_subtitle_used_when_body_missing(self):
        message = inbox.parse_inbox_message({"subtitle": "Report ready"})

        push = inbox.build_push_message(["t1"], message)

        self.assertEqual(push.notification.body, "Report ready")


class RegisteredTokensTest(unittest.TestCase):

    def test_filters_empty_tokens(self):
        self.assertEqual(
            inbox.registered_tokens({"fcmTokens": ["t1", "", None, "t2"]}),
            ["t1", "t2"],
        )

    def test_missing_or_malformed_tokens(self):
        for profile in (None, {}, {"fcmTokens": "t1"}):
            with self.subTest(profile=profile):
                self.assertEqual(inbox.registered_tokens(profile), [])


class NotifyInboxMessageTest(unittest.TestCase):

    @patch("notifications.inbox.messaging.send_each_for_multicast")
    def test_increments_unread_and_sends(self, mock_send):
        mock_send.return_value = MagicMock(success_count=2, failure_count=0)
        db = _mock_db({"fcmTokens": ["t1", "t2"]})
        message_ref = MagicMock()

        sent = inbox.notify_inbox_message(
            db, "u1", message_ref, {"title": "Hi", "createdAt": "2026-01-01"}
        )

        self.assertEqual(sent, 2)
        message_ref.update.assert_not_called()
        db.collection.assert_called_with("users")
        db.collection.return_value.document.assert_called_with("u1")
        meta_ref = (
            db.collection.return_value.document.return_value.collection.return_value.document.return_value
        )
        args, kwargs = meta_ref.set.call_args
        self.assertIsInstance(args[0]["inboxUnread"], Increment)
        self.assertEqual(args[0]["inboxUnread"].value, 1)
        self.assertEqual(kwargs, {"merge": True})
        push = mock_send.call_args.args[0]
        self.assertEqual(push.tokens, ["t1", "t2"])

    @patch("notifications.inbox.messaging.send_each_for_multicast")
    def test_stamps_created_at_when_missing(self, mock_send):
        mock_send.return_value = MagicMock(success_count=1, failure_count=0)
        message_ref = MagicMock()

        inbox.notify_inbox_message(
            _mock_db({"fcmTokens": ["t1"]}), "u1", message_ref, {"title": "Hi"}
        )

        message_ref.update.assert_called_once_with({"createdAt": SERVER_TIMESTAMP})

    @patch("notifications.inbox.messaging.send_each_for_multicast")
    def test_no_tokens_skips_send(self, mock_send):
        sent = inbox.notify_inbox_message(_mock_db(None), "u1", MagicMock(), {})

        self.assertEqual(sent, 0)
        mock_send.assert_not_called()

    @patch("notifications.inbox.messaging.send_each_for_multicast")
    def test_send_failure_is_swallowed(self, mock_send):
        mock_send.side_effect = RuntimeError("FCM unavailable")

        sent = inbox.notify_inbox_message(
            _mock_db({"fcmTokens": ["t1"]}), "u1", MagicMock(), {}
        )

        self.assertEqual(sent, 0)


if __name__ == "__main__":
    unittest.main()
