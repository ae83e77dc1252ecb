"""Racing upserts: the loser of the unique key falls back to an update."""
import pytest

from domain.payment.entity import Payment, PaymentStatus, WebhookEvent
from infrastructure.models import PaymentModel, WebhookEventModel
from tests.conftest import count_rows


def _miss_first_lookup(repository) -> list:
    """Make the first key lookup report no row, as if a concurrent writer inserted it just after."""
    real = repository._get_model
    calls = []

    async def lookup(key, **kwargs):
        calls.append(key)
        if len(calls) == 1:
            return None
        return await real(key, **kwargs)

    repository._get_model = lookup
    return calls


@pytest.mark.asyncio
async def test_payment_upsert_race_updates_existing_row(uow_factory, engine):
    async with uow_factory() as uow:
        await uow.payment_repository.upsert(
            Payment(payment_intent_id="pi_123", amount=2000, currency="usd", status=PaymentStatus.PENDING)
        )

    async with uow_factory() as uow:
        calls = _miss_first_lookup(uow.payment_repository)
        stored = await uow.payment_repository.upsert(
            Payment(
                payment_intent_id="pi_123",
                amount=2000,
                currency="usd",
                status=PaymentStatus.SUCCEEDED,
                metadata={"order_id": "42"},
            )
        )

    assert len(calls) >= 2
    assert stored.status == PaymentStatus.SUCCEEDED
    assert await count_rows(engine, PaymentModel) == 1
    async with uow_factory(readonly=True) as uow:
        payment = await uow.payment_repository.get_by_intent_id("pi_123")
    assert payment.status == PaymentStatus.SUCCEEDED
    assert payment.metadata == {"order_id": "42"}


@pytest.mark.asyncio
async def test_payment_upsert_race_keeps_terminal_status(uow_factory, engine):
    async with uow_factory() as uow:
        await uow.payment_repository.upsert(
            Payment(payment_intent_id="pi_123", amount=2000, currency="usd", status=PaymentStatus.SUCCEEDED)
        )

    async with uow_factory() as uow:
        _miss_first_lookup(uow.payment_repository)
        stored = await uow.payment_repository.upsert(
            Payment(payment_intent_id="pi_123", amount=2000, currency="usd", status=PaymentStatus.FAILED)
        )

    assert stored.status == PaymentStatus.SUCCEEDED
    assert await count_rows(engine, PaymentModel) == 1


@pytest.mark.asyncio
async def test_webhook_record_race_returns_existing_receipt(uow_factory, engine):
    async with uow_factory() as uow:
        await uow.webhook_event_repository.record(
            WebhookEvent(event_id="evt_1", event_type="payment_intent.succeeded", payload={})
        )
        await uow.webhook_event_repository.mark_processed("evt_1")

    async with uow_factory() as uow:
        calls = _miss_first_lookup(uow.webhook_event_repository)
        receipt = await uow.webhook_event_repository.record(
            WebhookEvent(event_id="evt_1", event_type="payment_intent.succeeded", payload={})
        )

    assert len(calls) >= 2
    assert receipt.processed is True
    assert await count_rows(engine, WebhookEventModel) == 1
