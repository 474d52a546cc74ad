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
from typing import Any, Dict, Optional


@dataclass
class CheckoutSessionResult:
    """Returned by create_checkout_session and create_subscription."""

    session_id: str
    url: Optional[str]


@dataclass
class BillingPortalResult:
    url: str


@dataclass
class WebhookEvent:
    """A Stripe event whose signature has been verified."""

    id: str
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    created: Optional[int] = None
    livemode: bool = False

    @property
    def object(self) -> Dict[str, Any]:
        """The Stripe object the event is about (event.data.object)."""
        return self.data.get("object") or {}


@dataclass
class WebhookAck:
    received: bool = True
