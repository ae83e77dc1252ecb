"""
Ledger repositories - SQLAlchemy data access for payments, refunds,
customers and webhook events.

Upserts insert inside a SAVEPOINT and fall back to update-by-key when the
unique identity constraint fires, so a racing writer costs one update, never
a second row and never the outer transaction.
"""
from typing import Any, Awaitable, Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.payment.entity import (
    Customer,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
    WebhookEvent,
    utcnow,
)
from domain.payment.repository import (
    CustomerRepository,
    PaymentRepository,
    RefundRepository,
    WebhookEventRepository,
)
from infrastructure.models.payment import (
    CustomerModel,
    PaymentModel,
    RefundModel,
    WebhookEventModel,
)


logger = get_logger(__name__)


async def _insert_or_fallback(
    session: AsyncSession,
    model: Any,
    reload: Callable[[], Awaitable[Optional[Any]]],
) -> tuple[Any, bool]:
    """Insert inside a savepoint, else load the row that won the unique key.

    Returns (row, inserted); re-raises when the conflict was not on the identity key.
    """
    try:
        async with session.begin_nested():
            session.add(model)
            await session.flush()
    except IntegrityError:
        existing = await reload()
        if existing is None:
            raise
        return existing, False
    return model, True


class SQLAlchemyPaymentRepository(PaymentRepository):
    """Payment ledger backed by the `payments` table"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        return Payment(
            payment_intent_id=model.payment_intent_id,
            amount=model.amount,
            currency=model.currency,
            status=PaymentStatus(model.status),
            customer_id=model.customer_id,
            metadata=dict(model.extra_metadata or {}),
            processor_data=dict(model.processor_data or {}),
            processor_created=model.processor_created,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        now = utcnow()
        return PaymentModel(
            payment_intent_id=entity.payment_intent_id,
            amount=entity.amount,
            currency=entity.currency,
            status=PaymentStatus(entity.status).value,
            customer_id=entity.customer_id,
            extra_metadata=entity.metadata,
            processor_data=entity.processor_data,
            processor_created=entity.processor_created,
            created_at=entity.created_at or now,
            updated_at=entity.updated_at or now,
        )

    async def _get_model(self, payment_intent_id: str) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.payment_intent_id == payment_intent_id)
        )
        return result.scalar_one_or_none()

    async def get_by_intent_id(self, payment_intent_id: str) -> Optional[Payment]:
        db_payment = await self._get_model(payment_intent_id)
        return self._to_entity(db_payment) if db_payment else None

    async def upsert(self, payment: Payment) -> Payment:
        db_payment = await self._get_model(payment.payment_intent_id)
        if db_payment is None:
            db_payment, inserted = await _insert_or_fallback(
                self.session,
                self._to_model(payment),
                lambda: self._get_model(payment.payment_intent_id),
            )
            if inserted:
                logger.info(
                    "payment_inserted",
                    payment_intent_id=payment.payment_intent_id,
                    status=db_payment.status,
                    amount=db_payment.amount,
                    currency=db_payment.currency,
                )
                return self._to_entity(db_payment)
            logger.info("payment_upsert_conflict", payment_intent_id=payment.payment_intent_id)

        current = self._to_entity(db_payment)
        incoming = PaymentStatus(payment.status)
        if current.is_final_status() and incoming != current.status:
            logger.info(
                "payment_stale_update_ignored",
                payment_intent_id=current.payment_intent_id,
                stored_status=current.status.value,
                incoming_status=incoming.value,
            )
            return current

        current.apply_status(incoming)
        db_payment.status = current.status.value
        db_payment.amount = payment.amount
        db_payment.currency = payment.currency
        if payment.customer_id:
            db_payment.customer_id = payment.customer_id
        if payment.metadata:
            db_payment.extra_metadata = dict(payment.metadata)
        if payment.processor_data:
            db_payment.processor_data = dict(payment.processor_data)
        if payment.processor_created is not None:
            db_payment.processor_created = payment.processor_created
        db_payment.updated_at = utcnow()

        await self.session.flush()
        logger.info(
            "payment_updated",
            payment_intent_id=db_payment.payment_intent_id,
            status=db_payment.status,
        )
        return self._to_entity(db_payment)

    async def update_status(self, payment_intent_id: str, status: PaymentStatus) -> Optional[Payment]:
        db_payment = await self._get_model(payment_intent_id)
        if db_payment is None:
            return None

        payment = self._to_entity(db_payment)
        if not payment.apply_status(status):
            logger.info(
                "payment_status_unchanged",
                payment_intent_id=payment_intent_id,
                stored_status=payment.status.value,
                requested_status=PaymentStatus(status).value,
            )
            return payment

        db_payment.status = payment.status.value
        db_payment.updated_at = payment.updated_at
        await self.session.flush()
        logger.info("payment_status_updated", payment_intent_id=payment_intent_id, status=db_payment.status)
        return self._to_entity(db_payment)

    async def list_by_customer(self, customer_id: str, limit: int = 10) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.customer_id == customer_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]


class SQLAlchemyRefundRepository(RefundRepository):
    """Refund ledger backed by the `refunds` table"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        return Refund(
            refund_id=model.refund_id,
            payment_intent_id=model.payment_intent_id,
            amount=model.amount,
            currency=model.currency,
            status=RefundStatus(model.status),
            processor_data=dict(model.processor_data or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Refund) -> RefundModel:
        now = utcnow()
        return RefundModel(
            refund_id=entity.refund_id,
            payment_intent_id=entity.payment_intent_id,
            amount=entity.amount,
            currency=entity.currency,
            status=RefundStatus(entity.status).value,
            processor_data=entity.processor_data,
            created_at=entity.created_at or now,
            updated_at=entity.updated_at or now,
        )

    async def _get_model(self, refund_id: str) -> Optional[RefundModel]:
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.refund_id == refund_id)
        )
        return result.scalar_one_or_none()

    async def create(self, refund: Refund) -> Refund:
        db_refund = self._to_model(refund)
        self.session.add(db_refund)
        await self.session.flush()
        logger.info(
            "refund_created",
            refund_id=db_refund.refund_id,
            payment_intent_id=db_refund.payment_intent_id,
            amount=db_refund.amount,
            status=db_refund.status,
        )
        return self._to_entity(db_refund)

    async def get_by_refund_id(self, refund_id: str) -> Optional[Refund]:
        db_refund = await self._get_model(refund_id)
        return self._to_entity(db_refund) if db_refund else None

    async def update_status(self, refund_id: str, status: RefundStatus) -> Optional[Refund]:
        db_refund = await self._get_model(refund_id)
        if db_refund is None:
            return None

        refund = self._to_entity(db_refund)
        if not refund.apply_status(status):
            return refund

        db_refund.status = refund.status.value
        db_refund.updated_at = refund.updated_at
        await self.session.flush()
        logger.info("refund_status_updated", refund_id=refund_id, status=db_refund.status)
        return self._to_entity(db_refund)

    async def list_by_payment(self, payment_intent_id: str) -> List[Refund]:
        result = await self.session.execute(
            select(RefundModel)
            .where(RefundModel.payment_intent_id == payment_intent_id)
            .order_by(RefundModel.created_at.desc(), RefundModel.id.desc())
        )
        return [self._to_entity(r) for r in result.scalars().all()]


class SQLAlchemyCustomerRepository(CustomerRepository):
    """Customer ledger backed by the `customers` table"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CustomerModel) -> Customer:
        return Customer(
            customer_id=model.customer_id,
            email=model.email,
            name=model.name,
            phone=model.phone,
            address=model.address,
            processor_data=dict(model.processor_data or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Customer) -> CustomerModel:
        now = utcnow()
        return CustomerModel(
            customer_id=entity.customer_id,
            email=entity.email,
            name=entity.name,
            phone=entity.phone,
            address=entity.address,
            processor_data=entity.processor_data,
            created_at=entity.created_at or now,
            updated_at=entity.updated_at or now,
        )

    async def _get_model(self, customer_id: str) -> Optional[CustomerModel]:
        result = await self.session.execute(
            select(CustomerModel).where(CustomerModel.customer_id == customer_id)
        )
        return result.scalar_one_or_none()

    async def get_by_customer_id(self, customer_id: str) -> Optional[Customer]:
        db_customer = await self._get_model(customer_id)
        return self._to_entity(db_customer) if db_customer else None

    async def upsert(self, customer: Customer) -> Customer:
        db_customer = await self._get_model(customer.customer_id)
        if db_customer is None:
            db_customer, inserted = await _insert_or_fallback(
                self.session,
                self._to_model(customer),
                lambda: self._get_model(customer.customer_id),
            )
            if inserted:
                logger.info("customer_inserted", customer_id=customer.customer_id)
                return self._to_entity(db_customer)

        db_customer.email = customer.email
        db_customer.name = customer.name
        db_customer.phone = customer.phone
        db_customer.address = customer.address
        if customer.processor_data:
            db_customer.processor_data = dict(customer.processor_data)
        db_customer.updated_at = utcnow()
        await self.session.flush()
        logger.info("customer_updated", customer_id=customer.customer_id)
        return self._to_entity(db_customer)


class SQLAlchemyWebhookEventRepository(WebhookEventRepository):
    """Webhook receipts backed by the `webhook_events` table"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WebhookEventModel) -> WebhookEvent:
        return WebhookEvent(
            event_id=model.event_id,
            event_type=model.event_type,
            payload=dict(model.payload or {}),
            processed=bool(model.processed),
            received_at=model.received_at,
            processed_at=model.processed_at,
        )

    def _to_model(self, entity: WebhookEvent) -> WebhookEventModel:
        return WebhookEventModel(
            event_id=entity.event_id,
            event_type=entity.event_type,
            payload=entity.payload,
            processed=entity.processed,
            received_at=entity.received_at or utcnow(),
            processed_at=entity.processed_at,
        )

    async def _get_model(self, event_id: str, *, for_update: bool = False) -> Optional[WebhookEventModel]:
        stmt = select(WebhookEventModel).where(WebhookEventModel.event_id == event_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_event_id(self, event_id: str, *, for_update: bool = False) -> Optional[WebhookEvent]:
        db_event = await self._get_model(event_id, for_update=for_update)
        return self._to_entity(db_event) if db_event else None

    async def record(self, event: WebhookEvent) -> WebhookEvent:
        db_event = await self._get_model(event.event_id)
        if db_event is not None:
            return self._to_entity(db_event)

        db_event, inserted = await _insert_or_fallback(
            self.session,
            self._to_model(event),
            lambda: self._get_model(event.event_id),
        )
        if inserted:
            logger.info("webhook_event_recorded", event_id=event.event_id, event_type=event.event_type)
        return self._to_entity(db_event)

    async def mark_processed(self, event_id: str) -> Optional[WebhookEvent]:
        db_event = await self._get_model(event_id)
        if db_event is None:
            return None

        event = self._to_entity(db_event)
        event.mark_processed()
        db_event.processed = event.processed
        db_event.processed_at = event.processed_at
        await self.session.flush()
        return self._to_entity(db_event)

    async def list_recent(self, limit: int = 100) -> List[WebhookEvent]:
        result = await self.session.execute(
            select(WebhookEventModel)
            .order_by(WebhookEventModel.received_at.desc(), WebhookEventModel.id.desc())
            .limit(limit)
        )
        return [self._to_entity(e) for e in result.scalars().all()]
