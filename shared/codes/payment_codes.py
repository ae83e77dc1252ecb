"""
Payment specific codes and processor status vocabulary.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Processor/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    TRANSPORT_ERROR = 60001
    SIGNATURE_ERROR = 60002
    NOT_CONFIGURED = 60003

    # Payment not complete (61xxx)
    PAYMENT_FAILED = 61000
    REQUIRES_ACTION = 61001
    PAYMENT_CANCELED = 61002
    UNKNOWN_STATUS = 61003

    # Local ledger (62xxx)
    PERSISTENCE_ERROR = 62000


# Webhook event types with a ledger side effect; everything else is recorded only
EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"
EVENT_CHARGE_REFUNDED = "charge.refunded"

HANDLED_EVENT_TYPES = frozenset(
    {EVENT_PAYMENT_SUCCEEDED, EVENT_PAYMENT_FAILED, EVENT_CHARGE_REFUNDED}
)
