import pytest

from domain.payment.entity import (
    Customer,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
    WebhookEvent,
    normalize_metadata,
    require_id,
    validate_amount,
    validate_currency,
)
from domain.payment.exceptions import (
    InvalidAmount,
    InvalidMetadata,
    MissingField,
    MissingId,
    UnsupportedCurrency,
)
from shared.codes import BusinessCode


SUPPORTED = {"usd", "eur", "jpy"}


@pytest.mark.parametrize("amount", [0, -1, 10.5, "100", None, True])
def test_validate_amount_rejects_non_positive_or_non_int(amount):
    with pytest.raises(InvalidAmount) as exc:
        validate_amount(amount)
    assert exc.value.field == "amount"
    assert exc.value.code == BusinessCode.PARAM_VALIDATION_ERROR


def test_validate_amount_accepts_minor_units():
    assert validate_amount(1) == 1
    assert validate_amount(2000) == 2000


def test_validate_currency_lowercases_supported_codes():
    assert validate_currency("USD", SUPPORTED) == "usd"
    assert validate_currency(" jpy ", SUPPORTED) == "jpy"


@pytest.mark.parametrize("currency", ["gbp", "US", "usdx", "", None, 840])
def test_validate_currency_rejects_unknown_codes(currency):
    with pytest.raises(UnsupportedCurrency):
        validate_currency(currency, SUPPORTED)


def test_require_id_reports_missing_field():
    with pytest.raises(MissingId) as exc:
        require_id("  ", "payment_intent_id")
    assert exc.value.field == "payment_intent_id"
    assert exc.value.code == BusinessCode.PARAM_MISSING


def test_normalize_metadata_keeps_flat_strings():
    assert normalize_metadata(None) == {}
    assert normalize_metadata({"order_id": "42"}) == {"order_id": "42"}


@pytest.mark.parametrize(
    "metadata",
    [
        {"nested": {"a": "b"}},
        {"list": ["a"]},
        {"count": 3},
        {1: "one"},
        {"": "empty key"},
        "order_id=42",
    ],
)
def test_normalize_metadata_rejects_non_string_values(metadata):
    with pytest.raises(InvalidMetadata):
        normalize_metadata(metadata)


def test_normalize_metadata_enforces_limits():
    with pytest.raises(InvalidMetadata):
        normalize_metadata({f"k{i}": "v" for i in range(3)}, max_keys=2)
    with pytest.raises(InvalidMetadata):
        normalize_metadata({"k" * 41: "v"})
    with pytest.raises(InvalidMetadata):
        normalize_metadata({"k": "v" * 501})


def _payment(status=PaymentStatus.PENDING) -> Payment:
    return Payment(payment_intent_id="pi_1", amount=2000, currency="USD", status=status)


def test_payment_normalizes_currency_and_validates_amount():
    payment = _payment()
    assert payment.currency == "usd"
    with pytest.raises(InvalidAmount):
        Payment(payment_intent_id="pi_1", amount=0, currency="usd", status=PaymentStatus.PENDING)


def test_payment_status_moves_forward_from_non_terminal():
    payment = _payment(PaymentStatus.REQUIRES_CONFIRMATION)
    assert payment.apply_status(PaymentStatus.FAILED) is True
    assert payment.apply_status(PaymentStatus.SUCCEEDED) is True
    assert payment.status == PaymentStatus.SUCCEEDED
    assert payment.updated_at is not None


@pytest.mark.parametrize("terminal", [PaymentStatus.SUCCEEDED, PaymentStatus.CANCELED])
def test_terminal_payment_never_reverts(terminal):
    payment = _payment(terminal)
    assert payment.is_final_status()
    for status in PaymentStatus:
        if status != terminal:
            assert payment.apply_status(status) is False
    assert payment.status == terminal


def test_refund_terminal_status_is_final():
    refund = Refund(refund_id="re_1", payment_intent_id="pi_1", amount=500, currency="usd", status=RefundStatus.PENDING)
    assert refund.apply_status(RefundStatus.SUCCEEDED) is True
    assert refund.apply_status(RefundStatus.FAILED) is False
    assert refund.status == RefundStatus.SUCCEEDED


def test_customer_requires_email():
    with pytest.raises(MissingField) as exc:
        Customer(customer_id="cus_1", email="")
    assert exc.value.field == "email"


def test_webhook_event_marks_processed_once():
    event = WebhookEvent(event_id="evt_1", event_type="charge.refunded")
    event.mark_processed()
    first = event.processed_at
    event.mark_processed()
    assert event.processed is True
    assert event.processed_at == first
