"""
Payment ledger entities and the payment status state machine.

Amounts are integers in minor currency units (cents); floats never reach
this layer. Records are keyed by processor-assigned identifiers.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from .exceptions import (
    InvalidAmount,
    InvalidMetadata,
    MissingField,
    MissingId,
    UnsupportedCurrency,
)


class PaymentStatus(str, Enum):
    """Payment intent status as mirrored in the ledger"""
    PENDING = "pending"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.CANCELED})


class RefundStatus(str, Enum):
    PENDING = "pending"
    REQUIRES_ACTION = "requires_action"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_REFUND_STATUSES = frozenset({RefundStatus.SUCCEEDED, RefundStatus.FAILED, RefundStatus.CANCELED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize to an aware UTC datetime"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def validate_amount(amount: Any) -> int:
    """Amount must be a positive int; bool is rejected even though it is an int."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount)
    return amount


def validate_currency(currency: Any, supported: Iterable[str]) -> str:
    if not isinstance(currency, str) or not currency.strip():
        raise UnsupportedCurrency(currency)
    code = currency.strip().lower()
    if len(code) != 3 or not code.isalpha() or code not in supported:
        raise UnsupportedCurrency(currency)
    return code


def require_id(value: Any, field_name: str = "id") -> str:
    if not isinstance(value, str) or not value.strip():
        raise MissingId(field_name)
    return value.strip()


def normalize_metadata(
    metadata: Optional[Mapping[Any, Any]],
    *,
    max_keys: int = 50,
    max_key_length: int = 40,
    max_value_length: int = 500,
) -> dict[str, str]:
    """
    Validate caller metadata as a flat string→string mapping.

    Non-string keys or values (including nested mappings and lists) are
    rejected rather than coerced.
    """
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise InvalidMetadata("Metadata must be a mapping of strings")
    if len(metadata) > max_keys:
        raise InvalidMetadata(f"Metadata may hold at most {max_keys} keys")

    clean: dict[str, str] = {}
    for key, value in metadata.items():
        if not isinstance(key, str) or not key.strip():
            raise InvalidMetadata("Metadata keys must be non-empty strings", key=str(key))
        if len(key) > max_key_length:
            raise InvalidMetadata(f"Metadata key longer than {max_key_length} characters", key=key)
        if not isinstance(value, str):
            raise InvalidMetadata("Metadata values must be strings", key=key)
        if len(value) > max_value_length:
            raise InvalidMetadata(f"Metadata value longer than {max_value_length} characters", key=key)
        clean[key] = value
    return clean


@dataclass
class Payment:
    """
    Ledger record of a payment intent.

    Rules:
    1. payment_intent_id is unique and never changes
    2. amount > 0, in minor units
    3. a terminal status (succeeded, canceled) never changes again
    """

    payment_intent_id: str
    amount: int
    currency: str
    status: PaymentStatus
    customer_id: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)
    processor_data: dict = field(default_factory=dict)
    processor_created: Optional[int] = None  # epoch seconds reported by the processor
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        require_id(self.payment_intent_id, "payment_intent_id")
        validate_amount(self.amount)
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise UnsupportedCurrency(self.currency)
        self.currency = self.currency.lower()
        self.status = PaymentStatus(self.status)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.metadata is None:
            self.metadata = {}
        if self.processor_data is None:
            self.processor_data = {}

    def is_final_status(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES

    def can_transition_to(self, status: PaymentStatus) -> bool:
        """Terminal records only accept their own status again."""
        status = PaymentStatus(status)
        if self.is_final_status():
            return status == self.status
        return True

    def apply_status(self, status: PaymentStatus) -> bool:
        """Move to `status` if allowed; returns whether the record changed."""
        status = PaymentStatus(status)
        if status == self.status or not self.can_transition_to(status):
            return False
        self.status = status
        self.updated_at = utcnow()
        return True


@dataclass
class Refund:
    """Ledger record of a processor refund; references a payment by intent id."""

    refund_id: str
    payment_intent_id: str
    amount: int
    currency: str
    status: RefundStatus
    processor_data: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        require_id(self.refund_id, "refund_id")
        require_id(self.payment_intent_id, "payment_intent_id")
        validate_amount(self.amount)
        self.currency = (self.currency or "").lower()
        self.status = RefundStatus(self.status)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.processor_data is None:
            self.processor_data = {}

    def apply_status(self, status: RefundStatus) -> bool:
        status = RefundStatus(status)
        if status == self.status or self.status in TERMINAL_REFUND_STATUSES:
            return False
        self.status = status
        self.updated_at = utcnow()
        return True


@dataclass
class Customer:
    customer_id: str
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[dict] = None
    processor_data: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        require_id(self.customer_id, "customer_id")
        if not self.email:
            raise MissingField("email")
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.processor_data is None:
            self.processor_data = {}


@dataclass
class WebhookEvent:
    """
    Receipt of a processor webhook event.

    event_id is the idempotency key of the reconciliation path: `processed`
    flips to True once, after the side effect was applied.
    """

    event_id: str
    event_type: str
    payload: dict = field(default_factory=dict)
    processed: bool = False
    received_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def __post_init__(self):
        require_id(self.event_id, "event_id")
        self.received_at = _ensure_utc(self.received_at)
        self.processed_at = _ensure_utc(self.processed_at)

    def mark_processed(self) -> None:
        if self.processed:
            return
        self.processed = True
        self.processed_at = utcnow()
