"""
Caller-facing payment API.

Every method returns a core.response.Response envelope and never raises:
business failures keep their code and error type, anything unexpected is
logged and reported as SYSTEM_ERROR.
"""
from __future__ import annotations

from typing import Any, Awaitable, Mapping, Optional

from pydantic import BaseModel

from application.services.payment_service import PaymentService
from application.services.webhook_service import WebhookService
from core.logging_config import get_logger
from core.response import Response, error_response, success_response
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode


logger = get_logger(__name__)


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


class PaymentAPI:
    def __init__(self, payments: PaymentService, webhooks: WebhookService) -> None:
        self.payments = payments
        self.webhooks = webhooks

    async def _run(self, operation: str, call: Awaitable[Any], message: str = "Success") -> Response:
        try:
            result = await call
        except BusinessException as exc:
            logger.info(
                "payment_api_error",
                operation=operation,
                code=int(exc.code),
                error_type=exc.error_type,
            )
            return error_response(
                code=exc.code,
                message=exc.message,
                error_type=exc.error_type,
                details=exc.details,
                field=exc.field,
            )
        except Exception as exc:
            logger.error("payment_api_unexpected_error", operation=operation, error=str(exc), exc_info=True)
            return error_response(
                code=BusinessCode.SYSTEM_ERROR,
                message="Internal server error",
                error_type="SystemError",
            )
        return success_response(data=_dump(result), message=message)

    async def create_intent(
        self,
        amount: Any,
        currency: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Response:
        return await self._run("create_intent", self.payments.create_intent(amount, currency, metadata))

    async def finalize(self, payment_intent_id: Any, metadata: Optional[Mapping[str, Any]] = None) -> Response:
        return await self._run("finalize", self.payments.finalize(payment_intent_id, metadata), "Payment succeeded")

    async def refund(
        self,
        payment_intent_id: Any,
        amount: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Response:
        return await self._run("refund", self.payments.refund(payment_intent_id, amount, metadata))

    async def cancel(self, payment_intent_id: Any) -> Response:
        return await self._run("cancel", self.payments.cancel(payment_intent_id))

    async def create_customer(self, fields: Mapping[str, Any]) -> Response:
        return await self._run("create_customer", self.payments.create_customer(fields))

    async def get_payment(self, payment_intent_id: Any) -> Response:
        return await self._run("get_payment", self.payments.get_payment(payment_intent_id))

    async def test_connection(self) -> Response:
        return await self._run("test_connection", self.payments.test_connection(), "Connection successful")

    async def handle_webhook(self, payload: bytes, signature_header: Optional[str]) -> Response:
        return await self._run("handle_webhook", self.webhooks.handle(payload, signature_header))
