"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on these Protocols; infrastructure implements adapters.
Gateway calls return the processor's parsed JSON object unchanged.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable


@runtime_checkable
class PaymentGateway(Protocol):
    """One authenticated processor call per method, no retries.

    Raises ProcessorApiError for non-2xx answers, TransportError for network
    failures and timeouts, ProcessorNotConfigured without credentials.
    """

    @property
    def is_configured(self) -> bool: ...

    async def create_payment_intent(
        self, amount: int, currency: str, metadata: Optional[Mapping[str, str]] = None
    ) -> dict[str, Any]: ...

    async def retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any]: ...

    async def confirm_payment_intent(
        self, payment_intent_id: str, params: Optional[Mapping[str, Any]] = None
    ) -> dict[str, Any]: ...

    async def cancel_payment_intent(self, payment_intent_id: str) -> dict[str, Any]: ...

    async def create_customer(self, fields: Mapping[str, Any]) -> dict[str, Any]: ...

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]: ...

    async def update_customer(self, customer_id: str, fields: Mapping[str, Any]) -> dict[str, Any]: ...

    async def create_refund(
        self,
        payment_intent_id: str,
        amount: Optional[int] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> dict[str, Any]: ...

    async def get_account(self) -> dict[str, Any]: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class WebhookSignatureVerifier(Protocol):
    def verify(self, payload: bytes, signature_header: Optional[str], secret: Optional[str] = None) -> bool: ...
