"""
Payment domain events.

Emitted after a reconciled state change has been committed, for downstream
subscribers (notifications, fulfilment). Domain stays free of infrastructure.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    payment_intent_id: str
    source_event_id: Optional[str] = None  # processor webhook event id
    data: dict = field(default_factory=dict)  # processor object snapshot
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass
class PaymentSucceeded(PaymentEvent):
    pass


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class RefundProcessed(PaymentEvent):
    refund_id: str = ""
