"""WebhookService: signature gate, idempotent receipts, out-of-order events."""
import pytest

from application.services.event_bus import ALL_EVENTS
from application.services.payment_service import PaymentService
from application.services.webhook_service import WebhookService, first_refund_id
from domain.payment import events
from domain.payment.entity import Payment, PaymentStatus, Refund, RefundStatus, WebhookEvent
from domain.payment.exceptions import MalformedPayload, PersistenceError, SignatureError
from infrastructure.external.payments.signature import WebhookSignatureVerifier
from infrastructure.models import WebhookEventModel
from tests.conftest import WEBHOOK_SECRET, count_rows, make_event, make_intent, sign


@pytest.fixture
def service(uow_factory):
    return WebhookService(WebhookSignatureVerifier(WEBHOOK_SECRET), uow_factory)


@pytest.fixture
def received(service):
    seen = []
    service.event_bus.subscribe(ALL_EVENTS, seen.append)
    return seen


async def _seed_payment(uow_factory, payment_intent_id="pi_123", status=PaymentStatus.PENDING):
    async with uow_factory() as uow:
        await uow.payment_repository.upsert(
            Payment(payment_intent_id=payment_intent_id, amount=2000, currency="usd", status=status)
        )


async def _payment_status(uow_factory, payment_intent_id="pi_123"):
    async with uow_factory(readonly=True) as uow:
        payment = await uow.payment_repository.get_by_intent_id(payment_intent_id)
    return payment.status


async def _deliver(service, event_id, event_type, obj):
    payload = make_event(event_id, event_type, obj)
    return await service.handle(payload, sign(payload))


@pytest.mark.asyncio
async def test_forged_signature_is_rejected_before_anything_is_stored(service, engine):
    payload = make_event("evt_1", "payment_intent.succeeded", make_intent("pi_123", "succeeded"))

    with pytest.raises(SignatureError):
        await service.handle(payload, sign(payload, "whsec_wrong"))
    with pytest.raises(SignatureError):
        await service.handle(payload, None)

    assert await count_rows(engine, WebhookEventModel) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [b"not json", b"[1, 2]", b'{"type": "payment_intent.succeeded"}', b'{"id": "", "type": "x"}'])
async def test_malformed_payload(service, engine, payload):
    with pytest.raises(MalformedPayload):
        await service.handle(payload, sign(payload))
    assert await count_rows(engine, WebhookEventModel) == 0


@pytest.mark.asyncio
async def test_succeeded_event_is_applied_exactly_once(service, uow_factory, engine, received):
    await _seed_payment(uow_factory)
    obj = make_intent("pi_123", "succeeded")

    first = await _deliver(service, "evt_1", "payment_intent.succeeded", obj)
    second = await _deliver(service, "evt_1", "payment_intent.succeeded", obj)

    assert first.handled is True and first.duplicate is False
    assert second.duplicate is True and second.handled is False
    assert await _payment_status(uow_factory) == PaymentStatus.SUCCEEDED
    assert await count_rows(engine, WebhookEventModel) == 1
    assert len(received) == 1
    assert isinstance(received[0], events.PaymentSucceeded)
    assert received[0].source_event_id == "evt_1"


@pytest.mark.asyncio
async def test_failed_after_success_is_ignored(service, uow_factory, received):
    await _seed_payment(uow_factory)
    await _deliver(service, "evt_1", "payment_intent.succeeded", make_intent("pi_123", "succeeded"))

    outcome = await _deliver(service, "evt_2", "payment_intent.payment_failed", make_intent("pi_123", "requires_payment_method"))

    assert outcome.handled is False
    assert await _payment_status(uow_factory) == PaymentStatus.SUCCEEDED
    assert [type(e) for e in received] == [events.PaymentSucceeded]


@pytest.mark.asyncio
async def test_failed_event_marks_pending_payment_failed(service, uow_factory, received):
    await _seed_payment(uow_factory)
    obj = make_intent("pi_123", "requires_payment_method", last_payment_error={"message": "Your card was declined."})

    outcome = await _deliver(service, "evt_3", "payment_intent.payment_failed", obj)

    assert outcome.handled is True
    assert await _payment_status(uow_factory) == PaymentStatus.FAILED
    assert isinstance(received[0], events.PaymentFailed)
    assert received[0].reason == "Your card was declined."


@pytest.mark.asyncio
async def test_succeeded_after_failed_still_completes(service, uow_factory):
    await _seed_payment(uow_factory, status=PaymentStatus.FAILED)

    outcome = await _deliver(service, "evt_4", "payment_intent.succeeded", make_intent("pi_123", "succeeded"))

    assert outcome.handled is True
    assert await _payment_status(uow_factory) == PaymentStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_succeeded_on_canceled_payment_is_ignored(service, uow_factory):
    await _seed_payment(uow_factory, status=PaymentStatus.CANCELED)

    outcome = await _deliver(service, "evt_5", "payment_intent.succeeded", make_intent("pi_123", "succeeded"))

    assert outcome.handled is False
    assert await _payment_status(uow_factory) == PaymentStatus.CANCELED


@pytest.mark.asyncio
async def test_charge_refunded_completes_refund(service, uow_factory, received):
    async with uow_factory() as uow:
        await uow.refund_repository.create(
            Refund(refund_id="re_1", payment_intent_id="pi_123", amount=500, currency="usd", status=RefundStatus.PENDING)
        )
    charge = {"id": "ch_1", "object": "charge", "payment_intent": "pi_123", "refunds": {"data": [{"id": "re_1"}]}}

    outcome = await _deliver(service, "evt_6", "charge.refunded", charge)

    assert outcome.handled is True
    async with uow_factory(readonly=True) as uow:
        refund = await uow.refund_repository.get_by_refund_id("re_1")
    assert refund.status == RefundStatus.SUCCEEDED
    assert isinstance(received[0], events.RefundProcessed)
    assert received[0].refund_id == "re_1"
    assert received[0].payment_intent_id == "pi_123"


@pytest.mark.asyncio
async def test_unhandled_event_type_is_recorded_and_acknowledged(service, uow_factory, received):
    outcome = await _deliver(service, "evt_7", "customer.created", {"id": "cus_1", "object": "customer"})

    assert outcome.handled is False
    assert outcome.duplicate is False
    async with uow_factory(readonly=True) as uow:
        receipt = await uow.webhook_event_repository.get_by_event_id("evt_7")
    assert receipt.processed is True
    assert receipt.event_type == "customer.created"
    assert received == []


@pytest.mark.asyncio
async def test_event_for_unrecorded_payment_creates_nothing(service, uow_factory):
    outcome = await _deliver(service, "evt_8", "payment_intent.succeeded", make_intent("pi_unknown", "succeeded"))

    assert outcome.handled is False
    async with uow_factory(readonly=True) as uow:
        assert await uow.payment_repository.get_by_intent_id("pi_unknown") is None
        receipt = await uow.webhook_event_repository.get_by_event_id("evt_8")
    assert receipt.processed is True


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_fail_reconciliation(service, uow_factory):
    await _seed_payment(uow_factory)
    delivered = []

    def broken(event):
        raise RuntimeError("mailer down")

    async def recorder(event):
        delivered.append(event)

    service.event_bus.subscribe(events.PaymentSucceeded, broken)
    service.event_bus.subscribe(events.PaymentSucceeded, recorder)

    outcome = await _deliver(service, "evt_9", "payment_intent.succeeded", make_intent("pi_123", "succeeded"))

    assert outcome.handled is True
    assert len(delivered) == 1
    assert await _payment_status(uow_factory) == PaymentStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_unprocessed_receipt_is_processed_on_redelivery(service, uow_factory):
    await _seed_payment(uow_factory)
    async with uow_factory() as uow:
        await uow.webhook_event_repository.record(
            WebhookEvent(event_id="evt_10", event_type="payment_intent.succeeded", payload={})
        )

    outcome = await _deliver(service, "evt_10", "payment_intent.succeeded", make_intent("pi_123", "succeeded"))

    assert outcome.duplicate is False
    assert outcome.handled is True
    assert await _payment_status(uow_factory) == PaymentStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_timestamped_signature_header_is_accepted(uow_factory):
    service = WebhookService(WebhookSignatureVerifier(WEBHOOK_SECRET), uow_factory)
    payload = make_event("evt_11", "customer.created", {"id": "cus_1"})
    header = f"t=1700000000,v1={sign(b'1700000000.' + payload)}"

    outcome = await service.handle(payload, header)

    assert outcome.event_id == "evt_11"


@pytest.mark.asyncio
async def test_recent_events_newest_first(service):
    await _deliver(service, "evt_a", "customer.created", {"id": "cus_1"})
    await _deliver(service, "evt_b", "customer.updated", {"id": "cus_1"})

    recent = await service.recent_events(limit=10)

    assert [e.event_id for e in recent] == ["evt_b", "evt_a"]
    assert all(e.processed for e in recent)


@pytest.mark.asyncio
async def test_storage_failure_reports_persistence_error(broken_uow_factory):
    service = WebhookService(WebhookSignatureVerifier(WEBHOOK_SECRET), broken_uow_factory)

    with pytest.raises(PersistenceError) as exc:
        await _deliver(service, "evt_12", "payment_intent.succeeded", make_intent("pi_123", "succeeded"))

    assert exc.value.details["entity"] == "webhook_event"
    assert exc.value.details["processor_succeeded"] is False


def test_first_refund_id():
    assert first_refund_id({"refunds": {"data": [{"id": "re_1"}, {"id": "re_2"}]}}) == "re_1"
    assert first_refund_id({"refunds": {"data": []}}) is None
    assert first_refund_id({}) is None
    assert first_refund_id({"refunds": {"data": {"id": "re_1"}}}) is None
    assert first_refund_id({"refunds": {"data": ["re_1"]}}) is None


@pytest.mark.asyncio
async def test_charge_refunded_with_object_shaped_refund_list_is_ignored(service, uow_factory):
    charge = {"id": "ch_1", "object": "charge", "refunds": {"data": {"id": "re_1"}}}

    outcome = await _deliver(service, "evt_13", "charge.refunded", charge)

    assert outcome.handled is False
    async with uow_factory(readonly=True) as uow:
        receipt = await uow.webhook_event_repository.get_by_event_id("evt_13")
    assert receipt.processed is True


@pytest.fixture
def payments(service, gateway, uow_factory, payment_settings):
    return PaymentService(gateway, uow_factory, settings=payment_settings, event_bus=service.event_bus)


@pytest.mark.asyncio
async def test_payment_succeeded_announced_once_when_webhook_arrives_first(service, payments, gateway, uow_factory, received):
    gateway.add_intent("pi_123", "succeeded")

    early = await _deliver(service, "evt_20", "payment_intent.succeeded", make_intent("pi_123", "succeeded"))
    await payments.finalize("pi_123")

    assert early.handled is False
    assert [type(e) for e in received] == [events.PaymentSucceeded]
    assert received[0].payment_intent_id == "pi_123"
    assert await _payment_status(uow_factory) == PaymentStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_payment_succeeded_announced_once_when_finalize_comes_first(service, payments, gateway, received):
    gateway.add_intent("pi_123", "succeeded")

    await payments.finalize("pi_123")
    late = await _deliver(service, "evt_21", "payment_intent.succeeded", make_intent("pi_123", "succeeded"))
    await payments.finalize("pi_123")

    assert late.handled is False
    assert late.duplicate is False
    assert [type(e) for e in received] == [events.PaymentSucceeded]


@pytest.mark.asyncio
async def test_second_refund_event_for_same_refund_is_not_announced_again(service, uow_factory, received):
    async with uow_factory() as uow:
        await uow.refund_repository.create(
            Refund(refund_id="re_1", payment_intent_id="pi_123", amount=500, currency="usd", status=RefundStatus.PENDING)
        )
    charge = {"id": "ch_1", "object": "charge", "payment_intent": "pi_123", "refunds": {"data": [{"id": "re_1"}]}}

    await _deliver(service, "evt_22", "charge.refunded", charge)
    again = await _deliver(service, "evt_23", "charge.refunded", charge)

    assert again.handled is False
    assert [type(e) for e in received] == [events.RefundProcessed]
