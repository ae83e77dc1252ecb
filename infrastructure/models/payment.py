"""
Ledger database models - SQLAlchemy ORM mappings.

Table mappings only; the business rules live in domain.payment.entity.
Each identity column carries a unique constraint so racing upserts resolve
to one insert plus one update.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
)

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_intent_id = Column(String(255), unique=True, nullable=False, comment="Processor payment intent id")

    # Minor currency units, never floating point
    amount = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(50), nullable=False, default="pending", index=True)
    customer_id = Column(String(255), nullable=True, index=True, comment="Processor customer id (weak reference)")

    # `metadata` is reserved on declarative classes
    extra_metadata = Column("metadata", JSON, nullable=True)
    processor_data = Column(JSON, nullable=True, comment="Raw processor payload snapshot")
    processor_created = Column(BigInteger, nullable=True, comment="Processor creation time (epoch seconds)")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_payments_customer_created", "customer_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(payment_intent_id='{self.payment_intent_id}', amount={self.amount}, "
            f"currency='{self.currency}', status='{self.status}')>"
        )


class RefundModel(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    refund_id = Column(String(255), unique=True, nullable=False, comment="Processor refund id")
    # Reference, not ownership: the payment row may not exist yet
    payment_intent_id = Column(String(255), nullable=False, index=True)

    amount = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(50), nullable=False, default="pending", index=True)
    processor_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<RefundModel(refund_id='{self.refund_id}', payment_intent_id='{self.payment_intent_id}', "
            f"amount={self.amount}, status='{self.status}')>"
        )


class CustomerModel(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String(255), unique=True, nullable=False, comment="Processor customer id")
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(JSON, nullable=True)
    processor_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return f"<CustomerModel(customer_id='{self.customer_id}', email='{self.email}')>"


class WebhookEventModel(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(255), unique=True, nullable=False, comment="Processor event id (idempotency key)")
    event_type = Column(String(100), nullable=False, index=True)
    payload = Column(JSON, nullable=True)
    processed = Column(Boolean, nullable=False, default=False, index=True)
    received_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return (
            f"<WebhookEventModel(event_id='{self.event_id}', event_type='{self.event_type}', "
            f"processed={self.processed})>"
        )
