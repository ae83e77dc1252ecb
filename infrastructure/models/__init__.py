"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import CustomerModel, PaymentModel, RefundModel, WebhookEventModel

__all__ = [
    "Base",
    "metadata",
    "PaymentModel",
    "RefundModel",
    "CustomerModel",
    "WebhookEventModel",
]
