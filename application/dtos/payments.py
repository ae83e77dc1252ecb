"""
Payment DTOs (Pydantic v2) used at application boundaries.

Request models stay permissive on amount sign, currency and metadata shape:
those rules live in the domain so every entry point reports them with the
same error types.
"""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator


class CreateIntentRequest(BaseModel):
    amount: StrictInt = Field(..., description="Amount in minor currency units (e.g. cents)")
    currency: Optional[str] = Field(default=None, description="3-letter code; defaults to the configured currency")
    metadata: Optional[dict[str, Any]] = None


class FinalizeRequest(BaseModel):
    metadata: Optional[dict[str, Any]] = None


class RefundRequest(BaseModel):
    payment_intent_id: str
    amount: Optional[StrictInt] = Field(default=None, description="Omit for a full refund")
    metadata: Optional[dict[str, Any]] = None


class CustomerCreate(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    address: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class IntentCreated(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount: int
    currency: str
    status: str


class PaymentResult(BaseModel):
    """Normalized outcome of a finalized payment; the raw processor payload is never exposed."""

    status: Literal["success"] = "success"
    payment_intent_id: str
    amount: int
    currency: str
    customer_id: Optional[str] = None
    created: Optional[int] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class RefundResult(BaseModel):
    refund_id: str
    payment_intent_id: str
    amount: int
    currency: str
    status: str


class PaymentView(BaseModel):
    payment_intent_id: str
    amount: int
    currency: str
    status: str
    customer_id: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    refunds: list[RefundResult] = Field(default_factory=list)


class CustomerResult(BaseModel):
    customer_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


class IntentStatus(BaseModel):
    payment_intent_id: str
    status: str


class ConnectionResult(BaseModel):
    connected: bool = True
    account_id: Optional[str] = None


class WebhookOutcome(BaseModel):
    event_id: str
    event_type: str
    duplicate: bool = False
    handled: bool = False


class ProcessorPaymentIntent(BaseModel):
    """The subset of a processor payment intent the core reads; everything else is kept."""

    model_config = ConfigDict(extra="allow")

    id: str
    status: str
    amount: int
    currency: str
    customer: Optional[str] = None
    created: Optional[int] = None
    client_secret: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("customer", mode="before")
    @classmethod
    def _customer_id(cls, v: Any) -> Optional[str]:
        # expanded customer objects collapse to their id
        if isinstance(v, dict):
            return v.get("id")
        return v

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_or_empty(cls, v: Any) -> dict[str, Any]:
        return v or {}


class ProcessorRefund(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    payment_intent: Optional[str] = None
    amount: int
    currency: str
    status: str


class WebhookEnvelope(BaseModel):
    """Processor event as delivered: {id, type, data: {object: {...}}}"""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def object(self) -> dict[str, Any]:
        obj = self.data.get("object")
        return obj if isinstance(obj, dict) else {}
