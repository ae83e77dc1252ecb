"""
Ledger repository interfaces - what the payment core needs from storage.

Identity columns (payment_intent_id, refund_id, customer_id, event_id) are
unique at the storage layer; upserts must be atomic against that constraint.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import (
    Customer,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
    WebhookEvent,
)


class PaymentRepository(ABC):

    @abstractmethod
    async def get_by_intent_id(self, payment_intent_id: str) -> Optional[Payment]:
        """Get a payment by processor payment-intent id"""

    @abstractmethod
    async def upsert(self, payment: Payment) -> Payment:
        """Insert, or update the existing row with the same payment-intent id.

        The stored status only moves forward per Payment.apply_status.
        """

    @abstractmethod
    async def update_status(self, payment_intent_id: str, status: PaymentStatus) -> Optional[Payment]:
        """Apply a status transition; None when no record exists yet"""

    @abstractmethod
    async def list_by_customer(self, customer_id: str, limit: int = 10) -> List[Payment]:
        """Payments of a customer, newest first"""


class RefundRepository(ABC):

    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        """Insert a refund (refund ids are processor generated)"""

    @abstractmethod
    async def get_by_refund_id(self, refund_id: str) -> Optional[Refund]:
        """Get a refund by processor refund id"""

    @abstractmethod
    async def update_status(self, refund_id: str, status: RefundStatus) -> Optional[Refund]:
        """Apply a status transition; None when no record exists"""

    @abstractmethod
    async def list_by_payment(self, payment_intent_id: str) -> List[Refund]:
        """Refunds of a payment, newest first"""


class CustomerRepository(ABC):

    @abstractmethod
    async def get_by_customer_id(self, customer_id: str) -> Optional[Customer]:
        """Get a customer by processor customer id"""

    @abstractmethod
    async def upsert(self, customer: Customer) -> Customer:
        """Insert or update by customer id"""


class WebhookEventRepository(ABC):

    @abstractmethod
    async def get_by_event_id(self, event_id: str, *, for_update: bool = False) -> Optional[WebhookEvent]:
        """Get an event receipt; for_update locks the row where supported"""

    @abstractmethod
    async def record(self, event: WebhookEvent) -> WebhookEvent:
        """Create the receipt if new, otherwise return the stored one"""

    @abstractmethod
    async def mark_processed(self, event_id: str) -> Optional[WebhookEvent]:
        """Flip processed to True and stamp processed_at"""

    @abstractmethod
    async def list_recent(self, limit: int = 100) -> List[WebhookEvent]:
        """Most recently received events first"""
