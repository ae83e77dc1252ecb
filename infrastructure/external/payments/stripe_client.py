"""
Stripe-compatible REST client over httpx.

One authenticated request per operation, bounded timeout, no retries:
retrying is left to the caller. Request bodies are form encoded with nested
keys flattened Stripe style (`metadata[order_id]=42`).
"""
from __future__ import annotations

import time
from typing import Any, Iterable, Mapping, Optional

import httpx

from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.payment.entity import require_id, validate_amount, validate_currency
from domain.payment.exceptions import (
    MissingField,
    ProcessorApiError,
    ProcessorNotConfigured,
    TransportError,
)


logger = get_logger(__name__)

UNKNOWN_ERROR_MESSAGE = "Unknown error"


def _encode_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def flatten_params(params: Mapping[str, Any], prefix: Optional[str] = None) -> dict[str, str]:
    """
    Flatten nested mappings/lists into form keys.

    {"metadata": {"a": "1"}, "flag": True} -> {"metadata[a]": "1", "flag": "true"}
    None values are dropped so optional fields are simply not sent.
    """
    flat: dict[str, str] = {}
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            flat.update(flatten_params(value, name))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                if isinstance(item, Mapping):
                    flat.update(flatten_params(item, f"{name}[{index}]"))
                elif item is not None:
                    flat[f"{name}[{index}]"] = _encode_scalar(item)
        else:
            flat[name] = _encode_scalar(value)
    return flat


class StripeClient:
    """HTTP adapter implementing application.ports.payment_gateway.PaymentGateway"""

    provider = "stripe"

    def __init__(
        self,
        secret_key: Optional[str],
        *,
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 30.0,
        supported_currencies: Iterable[str] = ("usd",),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._secret_key = secret_key
        self._api_base = api_base.rstrip("/") + "/"
        self._timeout = timeout
        self._supported_currencies = frozenset(c.lower() for c in supported_currencies)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(
        cls,
        settings: PaymentSettings = payment_settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "StripeClient":
        return cls(
            settings.stripe.secret_key,
            api_base=settings.stripe.api_base,
            timeout=settings.timeout,
            supported_currencies=settings.currencies,
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._secret_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._api_base,
                timeout=httpx.Timeout(self._timeout),
                headers={"Authorization": f"Bearer {self._secret_key}"},
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client if it was created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        data: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        if not self.is_configured:
            raise ProcessorNotConfigured()

        client = self._get_client()
        started = time.perf_counter()
        try:
            response = await client.request(
                method,
                path,
                data=flatten_params(data) if data is not None else None,
                params=flatten_params(params) if params else None,
            )
        except httpx.TransportError as exc:
            logger.warning(
                "processor_transport_error",
                method=method,
                path=path,
                error=exc.__class__.__name__,
            )
            raise TransportError(str(exc) or exc.__class__.__name__) from exc

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        body = self._decode(response)

        if response.is_success:
            logger.info(
                "processor_request",
                method=method,
                path=path,
                status_code=response.status_code,
                elapsed_ms=elapsed_ms,
            )
            return body

        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        message = error.get("message") or UNKNOWN_ERROR_MESSAGE
        logger.warning(
            "processor_api_error",
            method=method,
            path=path,
            status_code=response.status_code,
            processor_code=error.get("code"),
            elapsed_ms=elapsed_ms,
        )
        raise ProcessorApiError(response.status_code, message, processor_code=error.get("code"))

    # --- payment intents ---------------------------------------------------

    async def create_payment_intent(
        self, amount: int, currency: str, metadata: Optional[Mapping[str, str]] = None
    ) -> dict[str, Any]:
        validate_amount(amount)
        code = validate_currency(currency, self._supported_currencies)
        metadata = dict(metadata or {})
        data: dict[str, Any] = {
            "amount": amount,
            "currency": code,
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata or None,
        }
        if metadata.get("description"):
            data["description"] = metadata["description"]
        return await self._request("POST", "payment_intents", data=data)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        pi_id = require_id(payment_intent_id, "payment_intent_id")
        return await self._request("GET", f"payment_intents/{pi_id}")

    async def confirm_payment_intent(
        self, payment_intent_id: str, params: Optional[Mapping[str, Any]] = None
    ) -> dict[str, Any]:
        pi_id = require_id(payment_intent_id, "payment_intent_id")
        return await self._request("POST", f"payment_intents/{pi_id}/confirm", data=dict(params or {}))

    async def cancel_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        pi_id = require_id(payment_intent_id, "payment_intent_id")
        return await self._request("POST", f"payment_intents/{pi_id}/cancel", data={})

    # --- customers ---------------------------------------------------------

    async def create_customer(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        if not fields.get("email"):
            raise MissingField("email")
        return await self._request("POST", "customers", data=dict(fields))

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        cus_id = require_id(customer_id, "customer_id")
        return await self._request("GET", f"customers/{cus_id}")

    async def update_customer(self, customer_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        cus_id = require_id(customer_id, "customer_id")
        return await self._request("POST", f"customers/{cus_id}", data=dict(fields))

    # --- refunds / account -------------------------------------------------

    async def create_refund(
        self,
        payment_intent_id: str,
        amount: Optional[int] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> dict[str, Any]:
        pi_id = require_id(payment_intent_id, "payment_intent_id")
        data: dict[str, Any] = {"payment_intent": pi_id}
        # no amount means a full refund; the field must not be sent at all
        if amount is not None:
            data["amount"] = validate_amount(amount)
        if metadata:
            data["metadata"] = dict(metadata)
        return await self._request("POST", "refunds", data=data)

    async def get_account(self) -> dict[str, Any]:
        return await self._request("GET", "account")
