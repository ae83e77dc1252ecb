"""
Payment error taxonomy.

Every failure a caller can act on is a BusinessException subclass with a
stable code and error_type, so the facade can turn it into a tagged result.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException, DomainValidationException
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


# --- Validation (caller must correct input) ---------------------------------

class PaymentValidationError(DomainValidationException):
    """Bad caller input. Always recoverable by correcting the request."""


class InvalidAmount(PaymentValidationError):
    def __init__(self, amount: object):
        super().__init__(
            "Amount must be a positive integer in minor currency units",
            field="amount",
            details={"amount": repr(amount)},
            error_type="InvalidAmount",
        )


class UnsupportedCurrency(PaymentValidationError):
    def __init__(self, currency: object):
        super().__init__(
            f"Unsupported currency: {currency}",
            field="currency",
            details={"currency": currency if isinstance(currency, str) else repr(currency)},
            error_type="UnsupportedCurrency",
        )


class MissingId(PaymentValidationError):
    def __init__(self, field: str = "id"):
        super().__init__(
            f"{field} is required",
            field=field,
            error_type="MissingId",
            code=BusinessCode.PARAM_MISSING,
        )


class MissingField(PaymentValidationError):
    def __init__(self, field: str):
        super().__init__(
            f"Missing required field: {field}",
            field=field,
            error_type="MissingField",
            code=BusinessCode.PARAM_MISSING,
        )


class InvalidInput(PaymentValidationError):
    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message, field=field, error_type="InvalidInput")


class InvalidMetadata(PaymentValidationError):
    def __init__(self, message: str, *, key: Optional[str] = None):
        super().__init__(
            message,
            field="metadata",
            details={"key": key} if key is not None else None,
            error_type="InvalidMetadata",
        )


class MalformedPayload(PaymentValidationError):
    def __init__(self, message: str):
        super().__init__(message, field="payload", error_type="MalformedPayload")


# --- Processor / transport ---------------------------------------------------

class ProcessorApiError(BusinessException):
    """The processor answered with a non-2xx status."""

    def __init__(self, http_status: int, message: str, *, processor_code: Optional[str] = None):
        self.http_status = http_status
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="ProcessorApiError",
            details={"http_status": http_status, "processor_code": processor_code},
        )


class TransportError(BusinessException):
    """Network failure or timeout talking to the processor. Safe to retry."""

    def __init__(self, message: str):
        super().__init__(
            code=PaymentCode.TRANSPORT_ERROR,
            message=message,
            error_type="TransportError",
        )


class ProcessorNotConfigured(BusinessException):
    def __init__(self, message: str = "Payment processor is not configured"):
        super().__init__(
            code=PaymentCode.NOT_CONFIGURED,
            message=message,
            error_type="NotConfigured",
        )


class WebhookNotConfigured(ProcessorNotConfigured):
    def __init__(self):
        super().__init__("Webhook secret is not configured")


class SignatureError(BusinessException):
    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="SignatureError",
        )


# --- Payment not complete ----------------------------------------------------

class PaymentNotComplete(BusinessException):
    """The intent exists but has not reached `succeeded`."""

    def __init__(self, code: int, message: str, error_type: str, *, payment_intent_id: str, status: str):
        self.payment_intent_id = payment_intent_id
        self.status = status
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details={"payment_intent_id": payment_intent_id, "status": status},
        )


class PaymentFailed(PaymentNotComplete):
    def __init__(self, payment_intent_id: str, status: str = "requires_payment_method"):
        super().__init__(
            PaymentCode.PAYMENT_FAILED,
            "Payment method failed. Please try again.",
            "PaymentFailed",
            payment_intent_id=payment_intent_id,
            status=status,
        )


class RequiresAction(PaymentNotComplete):
    def __init__(self, payment_intent_id: str, status: str = "requires_action"):
        super().__init__(
            PaymentCode.REQUIRES_ACTION,
            "Payment requires additional action.",
            "RequiresAction",
            payment_intent_id=payment_intent_id,
            status=status,
        )


class PaymentCanceled(PaymentNotComplete):
    def __init__(self, payment_intent_id: str, status: str = "canceled"):
        super().__init__(
            PaymentCode.PAYMENT_CANCELED,
            "Payment was canceled.",
            "PaymentCanceled",
            payment_intent_id=payment_intent_id,
            status=status,
        )


class UnknownStatus(PaymentNotComplete):
    def __init__(self, payment_intent_id: str, status: str):
        super().__init__(
            PaymentCode.UNKNOWN_STATUS,
            f"Unknown payment status: {status}",
            "UnknownStatus",
            payment_intent_id=payment_intent_id,
            status=status,
        )


# --- Local ledger ------------------------------------------------------------

class PersistenceError(BusinessException):
    """The processor call succeeded but the local record could not be written."""

    def __init__(
        self,
        message: str,
        *,
        entity: str,
        processor_id: Optional[str] = None,
        processor_succeeded: bool = True,
    ):
        super().__init__(
            code=PaymentCode.PERSISTENCE_ERROR,
            message=message,
            error_type="PersistenceError",
            details={"entity": entity, "processor_id": processor_id, "processor_succeeded": processor_succeeded},
        )


class PaymentNotFound(BusinessException):
    def __init__(self, payment_intent_id: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"Payment {payment_intent_id} not found",
            error_type="PaymentNotFound",
            details={"payment_intent_id": payment_intent_id},
        )
