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
Non-secret runtime settings for the Cloud Functions.

Stripe keys are not here: they are bound per function as Secret Manager
params in main.py.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings, read from WELDQAI_* variables."""

    model_config = SettingsConfigDict(
        env_prefix="WELDQAI_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    region: str = Field(default="us-central1")
    max_instances: int = Field(default=10, ge=1)

    # Stripe Checkout / Billing Portal redirects
    checkout_success_url: str = Field(
        default="https://weldqai.com/payment-success?session_id={CHECKOUT_SESSION_ID}"
    )
    checkout_cancel_url: str = Field(default="https://weldqai.com/payment-cancel")
    billing_portal_return_url: str = Field(default="https://weldqai.com/account")

    # Plan name written to subscription/info and trial.convertedTo
    subscription_type: str = Field(default="monthly_individual")

    # Maximum age of a webhook signature timestamp, in seconds.
    webhook_tolerance_sec: int = Field(default=300, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
