"""
Payment processor settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so processor credentials can be
rotated without touching application settings.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CURRENCIES = "usd,eur,gbp,cad,aud,jpy"


class WebhookSettings(BaseModel):
    # 0 disables the timestamp window for `t=...,v1=...` signatures
    tolerance_seconds: int = 0
    signature_header: str = "Stripe-Signature"


class MetadataLimits(BaseModel):
    max_keys: int = 50
    max_key_length: int = 40
    max_value_length: int = 500


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    publishable_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_base: str = "https://api.stripe.com/v1"


class PaymentSettings(BaseSettings):
    timeout: float = 30.0
    default_currency: str = "usd"
    # Comma separated, e.g. SUPPORTED_CURRENCIES=usd,eur
    supported_currencies: str = DEFAULT_CURRENCIES
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    metadata: MetadataLimits = Field(default_factory=MetadataLimits)

    stripe: StripeSettings = Field(default_factory=StripeSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @property
    def currencies(self) -> frozenset[str]:
        return frozenset(
            item.strip().lower() for item in self.supported_currencies.split(",") if item.strip()
        )

    @field_validator("default_currency")
    @classmethod
    def _lower_default(cls, v: str) -> str:
        return v.lower()


payment_settings = PaymentSettings()
