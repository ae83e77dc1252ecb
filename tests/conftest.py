"""Pytest bootstrap configuration.

Environment defaults are set before application modules are imported so the
module-level settings objects never pick up a developer's .env values.
"""
import json
import os
from typing import Any, Optional
from urllib.parse import parse_qsl

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE__SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE__WEBHOOK_SECRET", "whsec_test")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select

from core.config import DatabaseSettings, Settings
from core.settings import PaymentSettings, StripeSettings
from domain.payment.exceptions import ProcessorApiError
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.external.payments.signature import compute_signature
from infrastructure.unit_of_work import make_uow_factory


WEBHOOK_SECRET = "whsec_test"
MEMORY_DB_URL = "sqlite+aiosqlite:///:memory:"


def make_intent(payment_intent_id: str, status: str, *, amount: int = 2000, currency: str = "usd", **extra) -> dict:
    intent = {
        "id": payment_intent_id,
        "object": "payment_intent",
        "status": status,
        "amount": amount,
        "currency": currency,
        "customer": None,
        "created": 1700000000,
        "client_secret": f"{payment_intent_id}_secret_abc",
        "metadata": {},
    }
    intent.update(extra)
    return intent


def make_event(event_id: str, event_type: str, obj: dict) -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode("utf-8")


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(payload, secret)


async def count_rows(engine, model) -> int:
    async with engine.connect() as conn:
        result = await conn.execute(select(func.count()).select_from(model))
        return result.scalar_one()


class StubGateway:
    """In-memory PaymentGateway recording every call."""

    is_configured = True

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.intents: dict[str, dict] = {}
        self.confirmed: dict[str, dict] = {}
        self.customers: dict[str, dict] = {}
        self._refund_seq = 0

    def add_intent(self, payment_intent_id: str, status: str, **kwargs) -> dict:
        intent = make_intent(payment_intent_id, status, **kwargs)
        self.intents[payment_intent_id] = intent
        return intent

    def _intent(self, payment_intent_id: str) -> dict:
        if payment_intent_id not in self.intents:
            raise ProcessorApiError(404, f"No such payment_intent: '{payment_intent_id}'")
        return dict(self.intents[payment_intent_id])

    async def create_payment_intent(self, amount, currency, metadata=None):
        self.calls.append(("create_payment_intent", amount, currency, dict(metadata or {})))
        return make_intent("pi_new", "requires_payment_method", amount=amount, currency=currency, metadata=dict(metadata or {}))

    async def retrieve_payment_intent(self, payment_intent_id):
        self.calls.append(("retrieve_payment_intent", payment_intent_id))
        return self._intent(payment_intent_id)

    async def confirm_payment_intent(self, payment_intent_id, params=None):
        self.calls.append(("confirm_payment_intent", payment_intent_id))
        if payment_intent_id in self.confirmed:
            return dict(self.confirmed[payment_intent_id])
        return {**self._intent(payment_intent_id), "status": "succeeded"}

    async def cancel_payment_intent(self, payment_intent_id):
        self.calls.append(("cancel_payment_intent", payment_intent_id))
        return {**self._intent(payment_intent_id), "status": "canceled"}

    async def create_customer(self, fields):
        self.calls.append(("create_customer", dict(fields)))
        customer = {"id": f"cus_{len(self.customers) + 1}", "object": "customer", **fields}
        self.customers[customer["id"]] = customer
        return dict(customer)

    async def retrieve_customer(self, customer_id):
        self.calls.append(("retrieve_customer", customer_id))
        return dict(self.customers[customer_id])

    async def update_customer(self, customer_id, fields):
        self.calls.append(("update_customer", customer_id, dict(fields)))
        customer = {**self.customers.get(customer_id, {"id": customer_id, "object": "customer"}), **fields}
        self.customers[customer_id] = customer
        return dict(customer)

    async def create_refund(self, payment_intent_id, amount=None, metadata=None):
        self.calls.append(("create_refund", payment_intent_id, amount, dict(metadata or {})))
        intent = self._intent(payment_intent_id)
        self._refund_seq += 1
        return {
            "id": f"re_{self._refund_seq}",
            "object": "refund",
            "payment_intent": payment_intent_id,
            "amount": amount if amount is not None else intent["amount"],
            "currency": intent["currency"],
            "status": "pending",
            "metadata": dict(metadata or {}),
        }

    async def get_account(self):
        self.calls.append(("get_account",))
        return {"id": "acct_123", "object": "account"}

    async def aclose(self):
        return None

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]


class FakeProcessor:
    """httpx.MockTransport handler speaking the processor's REST dialect."""

    def __init__(self) -> None:
        self.intents: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_status: Optional[int] = None
        self.fail_body: Any = None
        self.raise_exc: Optional[Exception] = None

    def add_intent(self, payment_intent_id: str, status: str, **kwargs) -> dict:
        intent = make_intent(payment_intent_id, status, **kwargs)
        self.intents[payment_intent_id] = intent
        return intent

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        return dict(parse_qsl(request.content.decode("utf-8")))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json=self.fail_body if self.fail_body is not None else {})

        parts = request.url.path.strip("/").split("/")[1:]  # drop the "v1" prefix
        form = self.form(request)

        if parts == ["payment_intents"] and request.method == "POST":
            intent = make_intent(f"pi_{len(self.intents) + 1}", "requires_payment_method", amount=int(form["amount"]), currency=form["currency"])
            self.intents[intent["id"]] = intent
            return httpx.Response(200, json=intent)
        if parts[:1] == ["payment_intents"] and len(parts) >= 2:
            intent = self.intents.get(parts[1])
            if intent is None:
                return httpx.Response(404, json={"error": {"message": f"No such payment_intent: '{parts[1]}'", "code": "resource_missing"}})
            if parts[2:] == ["confirm"]:
                intent["status"] = "succeeded"
            elif parts[2:] == ["cancel"]:
                intent["status"] = "canceled"
            return httpx.Response(200, json=intent)
        if parts == ["refunds"]:
            intent = self.intents[form["payment_intent"]]
            amount = int(form.get("amount", intent["amount"]))
            return httpx.Response(200, json={
                "id": "re_1",
                "object": "refund",
                "payment_intent": intent["id"],
                "amount": amount,
                "currency": intent["currency"],
                "status": "succeeded",
            })
        if parts == ["customers"]:
            return httpx.Response(200, json={"id": "cus_1", "object": "customer", "email": form.get("email"), "name": form.get("name")})
        if parts == ["account"]:
            return httpx.Response(200, json={"id": "acct_123", "object": "account"})
        return httpx.Response(404, json={"error": {"message": "Unrecognized request URL"}})


@pytest.fixture
def payment_settings() -> PaymentSettings:
    return PaymentSettings(
        stripe=StripeSettings(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET),
    )


@pytest.fixture
def app_settings() -> Settings:
    return Settings(database=DatabaseSettings(url=MEMORY_DB_URL), AUTO_CREATE_TABLES=True)


@pytest_asyncio.fixture
async def engine():
    engine = build_engine(MEMORY_DB_URL)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_factory(engine):
    return make_uow_factory(build_session_factory(engine))


@pytest_asyncio.fixture
async def broken_uow_factory():
    """Unit of work over a database without tables: every statement fails."""
    engine = build_engine(MEMORY_DB_URL)
    yield make_uow_factory(build_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()
