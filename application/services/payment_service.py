"""
Payment lifecycle orchestration: create, finalize, refund and cancel payment
intents, and mirror processor customers into the ledger.

This class depends only on the PaymentGateway port and the Unit of Work
abstraction; adapters are injected from the composition root. Processor calls
are always made with no ledger transaction open.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError

from application.dtos.payments import (
    ConnectionResult,
    CustomerResult,
    IntentCreated,
    IntentStatus,
    PaymentResult,
    PaymentView,
    ProcessorPaymentIntent,
    ProcessorRefund,
    RefundResult,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.event_bus import PaymentEventBus
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import StorageError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    Customer,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
    normalize_metadata,
    require_id,
    validate_amount,
    validate_currency,
)
from domain.payment.events import PaymentSucceeded
from domain.payment.exceptions import (
    InvalidInput,
    MissingField,
    PaymentCanceled,
    PaymentFailed,
    PaymentNotFound,
    PersistenceError,
    ProcessorApiError,
    RequiresAction,
    UnknownStatus,
)


logger = get_logger(__name__)

UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]


def parse_intent(payload: Mapping[str, Any]) -> ProcessorPaymentIntent:
    try:
        return ProcessorPaymentIntent.model_validate(payload)
    except ValidationError as exc:
        raise ProcessorApiError(502, f"Unexpected payment intent payload: {exc.error_count()} invalid field(s)") from exc


def _string_metadata(metadata: Mapping[str, Any]) -> dict[str, str]:
    return {str(k): str(v) for k, v in (metadata or {}).items() if v is not None}


def _refund_status(value: str) -> RefundStatus:
    try:
        return RefundStatus(value)
    except ValueError:
        return RefundStatus.PENDING


def payment_view(payment: Payment, refunds: Optional[list[Refund]] = None) -> PaymentView:
    return PaymentView(
        payment_intent_id=payment.payment_intent_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status.value,
        customer_id=payment.customer_id,
        metadata=payment.metadata,
        created_at=payment.created_at.isoformat() if payment.created_at else None,
        updated_at=payment.updated_at.isoformat() if payment.updated_at else None,
        refunds=[refund_result(r) for r in refunds or []],
    )


def refund_result(refund: Refund) -> RefundResult:
    return RefundResult(
        refund_id=refund.refund_id,
        payment_intent_id=refund.payment_intent_id,
        amount=refund.amount,
        currency=refund.currency,
        status=refund.status.value,
    )


class PaymentService:
    def __init__(
        self,
        gateway: PaymentGateway,
        uow_factory: UnitOfWorkFactory,
        *,
        settings: PaymentSettings = payment_settings,
        event_bus: Optional[PaymentEventBus] = None,
    ) -> None:
        self.gateway = gateway
        self._uow_factory = uow_factory
        self._settings = settings
        self._event_bus = event_bus or PaymentEventBus()

    @property
    def event_bus(self) -> PaymentEventBus:
        return self._event_bus

    def _metadata(self, metadata: Optional[Mapping[str, Any]]) -> dict[str, str]:
        limits = self._settings.metadata
        return normalize_metadata(
            metadata,
            max_keys=limits.max_keys,
            max_key_length=limits.max_key_length,
            max_value_length=limits.max_value_length,
        )

    # --- intents -----------------------------------------------------------

    async def create_intent(
        self,
        amount: int,
        currency: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> IntentCreated:
        """Validate locally, then make exactly one processor call. Nothing is persisted."""
        validate_amount(amount)
        code = validate_currency(currency or self._settings.default_currency, self._settings.currencies)
        clean_metadata = self._metadata(metadata)

        logger.info("payment_intent_create_request", amount=amount, currency=code)
        intent = parse_intent(await self.gateway.create_payment_intent(amount, code, clean_metadata))
        logger.info("payment_intent_created", payment_intent_id=intent.id, status=intent.status)

        return IntentCreated(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount,
            currency=intent.currency,
            status=intent.status,
        )

    async def finalize(
        self,
        payment_intent_id: str,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> PaymentResult:
        """
        Drive an intent to its outcome and record it when it succeeded.

        Idempotent for succeeded intents: the ledger upsert is keyed by the
        payment intent id, so repeated calls leave one row and return the same
        result.

        Raises:
            PaymentFailed: the payment method was declined (payer can retry)
            RequiresAction: client-side authentication is pending
            PaymentCanceled: the intent was canceled
            UnknownStatus: any other status
        """
        if not isinstance(payment_intent_id, str) or not payment_intent_id.strip():
            raise InvalidInput("Invalid payment intent ID", field="payment_intent_id")
        pi_id = payment_intent_id.strip()
        caller_metadata = self._metadata(metadata)

        logger.info("payment_finalize_request", payment_intent_id=pi_id)
        payload = await self.gateway.retrieve_payment_intent(pi_id)
        intent = parse_intent(payload)

        if intent.status == PaymentStatus.REQUIRES_CONFIRMATION.value:
            payload = await self.gateway.confirm_payment_intent(pi_id)
            intent = parse_intent(payload)
            logger.info("payment_finalize_confirmed", payment_intent_id=pi_id, status=intent.status)

        status = intent.status
        if status == PaymentStatus.SUCCEEDED.value:
            return await self._record_success(intent, payload, caller_metadata)

        logger.info("payment_not_complete", payment_intent_id=pi_id, status=status)
        if status == PaymentStatus.REQUIRES_PAYMENT_METHOD.value:
            raise PaymentFailed(pi_id, status)
        if status == PaymentStatus.REQUIRES_ACTION.value:
            raise RequiresAction(pi_id, status)
        if status == PaymentStatus.CANCELED.value:
            raise PaymentCanceled(pi_id, status)
        raise UnknownStatus(pi_id, status)

    async def _record_success(
        self,
        intent: ProcessorPaymentIntent,
        payload: Mapping[str, Any],
        caller_metadata: dict[str, str],
    ) -> PaymentResult:
        merged_metadata = {**_string_metadata(intent.metadata), **caller_metadata}
        payment = Payment(
            payment_intent_id=intent.id,
            amount=intent.amount,
            currency=intent.currency,
            status=PaymentStatus.SUCCEEDED,
            customer_id=intent.customer,
            metadata=merged_metadata,
            processor_data=dict(payload),
            processor_created=intent.created,
        )
        try:
            async with self._uow_factory() as uow:
                previous = await uow.payment_repository.get_by_intent_id(intent.id)
                stored = await uow.payment_repository.upsert(payment)
        except StorageError as exc:
            logger.error("payment_persistence_failed", payment_intent_id=intent.id, error=str(exc), exc_info=True)
            raise PersistenceError(
                "Payment succeeded but could not be recorded",
                entity="payment",
                processor_id=intent.id,
            ) from exc

        logger.info("payment_finalized", payment_intent_id=intent.id, amount=intent.amount, currency=intent.currency)
        # announced once per transition to succeeded
        newly_succeeded = stored.status == PaymentStatus.SUCCEEDED and (
            previous is None or previous.status != PaymentStatus.SUCCEEDED
        )
        if newly_succeeded:
            await self._event_bus.publish(PaymentSucceeded(payment_intent_id=intent.id, data=dict(payload)))
        return PaymentResult(
            payment_intent_id=intent.id,
            amount=intent.amount,
            currency=intent.currency,
            customer_id=intent.customer,
            created=intent.created,
            metadata=merged_metadata,
        )

    async def cancel(self, payment_intent_id: str) -> IntentStatus:
        pi_id = require_id(payment_intent_id, "payment_intent_id")
        logger.info("payment_cancel_request", payment_intent_id=pi_id)
        intent = parse_intent(await self.gateway.cancel_payment_intent(pi_id))

        if intent.status == PaymentStatus.CANCELED.value:
            try:
                async with self._uow_factory() as uow:
                    await uow.payment_repository.update_status(pi_id, PaymentStatus.CANCELED)
            except StorageError as exc:
                logger.error("payment_persistence_failed", payment_intent_id=pi_id, error=str(exc), exc_info=True)
                raise PersistenceError(
                    "Payment canceled but the ledger could not be updated",
                    entity="payment",
                    processor_id=pi_id,
                ) from exc

        logger.info("payment_canceled", payment_intent_id=pi_id, status=intent.status)
        return IntentStatus(payment_intent_id=pi_id, status=intent.status)

    # --- refunds -----------------------------------------------------------

    async def refund(
        self,
        payment_intent_id: str,
        amount: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> RefundResult:
        """Full refund when amount is None; the record is a plain insert keyed by the processor refund id."""
        pi_id = require_id(payment_intent_id, "payment_intent_id")
        if amount is not None:
            validate_amount(amount)
        clean_metadata = self._metadata(metadata)

        logger.info("payment_refund_request", payment_intent_id=pi_id, amount=amount)
        payload = await self.gateway.create_refund(pi_id, amount, clean_metadata or None)
        try:
            parsed = ProcessorRefund.model_validate(payload)
        except ValidationError as exc:
            raise ProcessorApiError(502, "Unexpected refund payload") from exc

        refund = Refund(
            refund_id=parsed.id,
            payment_intent_id=parsed.payment_intent or pi_id,
            amount=parsed.amount,
            currency=parsed.currency,
            status=_refund_status(parsed.status),
            processor_data=dict(payload),
        )
        try:
            async with self._uow_factory() as uow:
                refund = await uow.refund_repository.create(refund)
        except StorageError as exc:
            logger.error("refund_persistence_failed", refund_id=parsed.id, error=str(exc), exc_info=True)
            raise PersistenceError(
                "Refund issued but could not be recorded",
                entity="refund",
                processor_id=parsed.id,
            ) from exc

        return refund_result(refund)

    # --- customers ---------------------------------------------------------

    async def create_customer(self, fields: Mapping[str, Any]) -> CustomerResult:
        fields = dict(fields or {})
        if not fields.get("email"):
            raise MissingField("email")
        if "metadata" in fields:
            fields["metadata"] = self._metadata(fields["metadata"])

        logger.info("customer_create_request")
        payload = await self.gateway.create_customer(fields)
        customer_id = require_id(payload.get("id"), "customer_id")
        customer = Customer(
            customer_id=customer_id,
            email=payload.get("email") or fields["email"],
            name=payload.get("name", fields.get("name")),
            phone=payload.get("phone", fields.get("phone")),
            address=payload.get("address", fields.get("address")),
            processor_data=dict(payload),
        )
        return await self._save_customer(customer)

    async def update_customer(self, customer_id: str, fields: Mapping[str, Any]) -> CustomerResult:
        cus_id = require_id(customer_id, "customer_id")
        fields = dict(fields or {})
        if "metadata" in fields:
            fields["metadata"] = self._metadata(fields["metadata"])

        logger.info("customer_update_request", customer_id=cus_id)
        payload = await self.gateway.update_customer(cus_id, fields)

        async with self._uow_factory(readonly=True) as uow:
            existing = await uow.customer_repository.get_by_customer_id(cus_id)
        email = payload.get("email") or fields.get("email") or (existing.email if existing else None)
        if not email:
            logger.warning("customer_update_not_recorded", customer_id=cus_id, reason="no email")
            return CustomerResult(customer_id=cus_id, name=payload.get("name"), phone=payload.get("phone"))

        customer = Customer(
            customer_id=cus_id,
            email=email,
            name=payload.get("name", fields.get("name")),
            phone=payload.get("phone", fields.get("phone")),
            address=payload.get("address", fields.get("address")),
            processor_data=dict(payload),
        )
        return await self._save_customer(customer)

    async def _save_customer(self, customer: Customer) -> CustomerResult:
        try:
            async with self._uow_factory() as uow:
                customer = await uow.customer_repository.upsert(customer)
        except StorageError as exc:
            logger.error("customer_persistence_failed", customer_id=customer.customer_id, error=str(exc), exc_info=True)
            raise PersistenceError(
                "Customer saved at the processor but could not be recorded",
                entity="customer",
                processor_id=customer.customer_id,
            ) from exc
        logger.info("customer_recorded", customer_id=customer.customer_id)
        return CustomerResult(
            customer_id=customer.customer_id,
            email=customer.email,
            name=customer.name,
            phone=customer.phone,
        )

    # --- queries -----------------------------------------------------------

    async def get_payment(self, payment_intent_id: str) -> PaymentView:
        pi_id = require_id(payment_intent_id, "payment_intent_id")
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_intent_id(pi_id)
            if payment is None:
                raise PaymentNotFound(pi_id)
            refunds = await uow.refund_repository.list_by_payment(pi_id)
        return payment_view(payment, refunds)

    async def list_customer_payments(self, customer_id: str, limit: int = 10) -> list[PaymentView]:
        cus_id = require_id(customer_id, "customer_id")
        async with self._uow_factory(readonly=True) as uow:
            payments = await uow.payment_repository.list_by_customer(cus_id, limit=limit)
        return [payment_view(p) for p in payments]

    async def test_connection(self) -> ConnectionResult:
        account = await self.gateway.get_account()
        logger.info("processor_connection_ok", account_id=account.get("id"))
        return ConnectionResult(connected=True, account_id=account.get("id"))

    async def aclose(self) -> None:
        close = getattr(self.gateway, "aclose", None)
        if callable(close):
            await close()
