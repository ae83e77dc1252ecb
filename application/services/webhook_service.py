"""
Webhook reconciliation: turn at-least-once, possibly reordered processor
events into exactly-once ledger updates.

Flow per delivery:
1. verify the signature over the raw body (nothing is stored on failure)
2. parse {id, type, data.object}
3. record the receipt (processed=False) in its own transaction
4. in a second transaction, re-read the receipt under a row lock, apply the
   side effect and mark it processed together
5. after commit, publish a domain event
"""
from __future__ import annotations

import json
from typing import Any, Callable, Optional

from pydantic import ValidationError

from application.dtos.payments import WebhookEnvelope, WebhookOutcome
from application.ports.payment_gateway import WebhookSignatureVerifier
from application.services.event_bus import PaymentEventBus
from core.logging_config import get_logger
from domain.common.exceptions import StorageError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import PaymentStatus, RefundStatus, WebhookEvent
from domain.payment.events import PaymentEvent, PaymentFailed, PaymentSucceeded, RefundProcessed
from domain.payment.exceptions import MalformedPayload, PersistenceError, SignatureError
from shared.codes.payment_codes import (
    EVENT_CHARGE_REFUNDED,
    EVENT_PAYMENT_FAILED,
    EVENT_PAYMENT_SUCCEEDED,
    HANDLED_EVENT_TYPES,
)


logger = get_logger(__name__)


def parse_event(payload: bytes) -> WebhookEnvelope:
    try:
        body = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedPayload("Webhook body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise MalformedPayload("Webhook body must be a JSON object")
    try:
        return WebhookEnvelope.model_validate(body)
    except ValidationError as exc:
        raise MalformedPayload("Webhook event is missing id or type") from exc


def first_refund_id(charge: dict[str, Any]) -> Optional[str]:
    refunds = charge.get("refunds")
    data = refunds.get("data") if isinstance(refunds, dict) else None
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return None
    return data[0].get("id") or None


class WebhookService:
    def __init__(
        self,
        verifier: WebhookSignatureVerifier,
        uow_factory: Callable[..., AbstractUnitOfWork],
        event_bus: Optional[PaymentEventBus] = None,
    ) -> None:
        self._verifier = verifier
        self._uow_factory = uow_factory
        self._event_bus = event_bus or PaymentEventBus()

    @property
    def event_bus(self) -> PaymentEventBus:
        return self._event_bus

    async def handle(self, payload: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        if not self._verifier.verify(payload, signature_header):
            logger.warning("webhook_signature_invalid", has_header=bool(signature_header))
            raise SignatureError()

        envelope = parse_event(payload)
        event_id, event_type = envelope.id, envelope.type
        logger.info("webhook_received", event_id=event_id, event_type=event_type)

        try:
            async with self._uow_factory() as uow:
                receipt = await uow.webhook_event_repository.record(
                    WebhookEvent(event_id=event_id, event_type=event_type, payload=envelope.model_dump())
                )
            if receipt.processed:
                logger.info("webhook_duplicate_ignored", event_id=event_id, event_type=event_type)
                return WebhookOutcome(event_id=event_id, event_type=event_type, duplicate=True)

            async with self._uow_factory() as uow:
                receipt = await uow.webhook_event_repository.get_by_event_id(event_id, for_update=True)
                if receipt is not None and receipt.processed:
                    logger.info("webhook_duplicate_ignored", event_id=event_id, event_type=event_type, stage="locked")
                    return WebhookOutcome(event_id=event_id, event_type=event_type, duplicate=True)

                domain_event = await self._dispatch(uow, event_id, event_type, envelope.object)
                await uow.webhook_event_repository.mark_processed(event_id)
        except StorageError as exc:
            logger.error("webhook_persistence_failed", event_id=event_id, event_type=event_type, error=str(exc), exc_info=True)
            raise PersistenceError(
                "Webhook event could not be reconciled",
                entity="webhook_event",
                processor_id=event_id,
                processor_succeeded=False,
            ) from exc

        logger.info("webhook_processed", event_id=event_id, event_type=event_type, handled=domain_event is not None)
        if domain_event is not None:
            await self._event_bus.publish(domain_event)
        return WebhookOutcome(event_id=event_id, event_type=event_type, handled=domain_event is not None)

    async def _dispatch(
        self,
        uow: AbstractUnitOfWork,
        event_id: str,
        event_type: str,
        obj: dict[str, Any],
    ) -> Optional[PaymentEvent]:
        """Apply the ledger side effect; returns the event to publish, if any.

        An event is returned only when this delivery moved the record, so the
        same transition reached through finalize or another event id is not
        announced twice.
        """
        if event_type not in HANDLED_EVENT_TYPES:
            logger.info("webhook_event_type_ignored", event_id=event_id, event_type=event_type)
            return None

        if event_type == EVENT_CHARGE_REFUNDED:
            refund_id = first_refund_id(obj)
            if not refund_id:
                return None
            current = await uow.refund_repository.get_by_refund_id(refund_id)
            if current is None or current.status == RefundStatus.SUCCEEDED:
                logger.info("webhook_refund_not_applied", event_id=event_id, refund_id=refund_id)
                return None
            refund = await uow.refund_repository.update_status(refund_id, RefundStatus.SUCCEEDED)
            if refund is None or refund.status != RefundStatus.SUCCEEDED:
                logger.info("webhook_refund_not_applied", event_id=event_id, refund_id=refund_id)
                return None
            return RefundProcessed(
                payment_intent_id=refund.payment_intent_id,
                source_event_id=event_id,
                data=obj,
                refund_id=refund_id,
            )

        pi_id = obj.get("id")
        if not pi_id:
            return None
        target = PaymentStatus.SUCCEEDED if event_type == EVENT_PAYMENT_SUCCEEDED else PaymentStatus.FAILED
        current = await uow.payment_repository.get_by_intent_id(pi_id)
        if current is None:
            # finalize records the payment and announces it
            logger.info("webhook_payment_not_recorded", event_id=event_id, payment_intent_id=pi_id)
            return None
        if current.status == target:
            logger.info("webhook_payment_already_applied", event_id=event_id, payment_intent_id=pi_id, status=target.value)
            return None

        payment = await uow.payment_repository.update_status(pi_id, target)
        if payment is None or payment.status != target:
            logger.info(
                "webhook_payment_status_ignored",
                event_id=event_id,
                payment_intent_id=pi_id,
                stored_status=current.status.value,
                requested_status=target.value,
            )
            return None

        if target == PaymentStatus.SUCCEEDED:
            return PaymentSucceeded(payment_intent_id=pi_id, source_event_id=event_id, data=obj)
        error = obj.get("last_payment_error")
        reason = error.get("message") if isinstance(error, dict) else None
        return PaymentFailed(payment_intent_id=pi_id, source_event_id=event_id, data=obj, reason=reason)

    async def recent_events(self, limit: int = 100) -> list[WebhookEvent]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.webhook_event_repository.list_recent(limit=limit)
