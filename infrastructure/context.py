"""
Application context: builds every long-lived collaborator once.

The FastAPI lifespan stores the context on app.state; routes reach it
through api.dependencies. Tests build their own context with an in-memory
database and a mock HTTP transport.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from application.ports.payment_gateway import PaymentGateway
from application.services.event_bus import PaymentEventBus
from application.services.payment_api import PaymentAPI
from application.services.payment_service import PaymentService
from application.services.webhook_service import WebhookService
from core.config import Settings, settings as default_settings
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings as default_payment_settings
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.external.payments import StripeClient, WebhookSignatureVerifier
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork, make_uow_factory


logger = get_logger(__name__)


@dataclass
class AppContext:
    settings: Settings
    payment_settings: PaymentSettings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    uow_factory: Callable[..., SQLAlchemyUnitOfWork]
    gateway: PaymentGateway
    verifier: WebhookSignatureVerifier
    event_bus: PaymentEventBus
    payments: PaymentService
    webhooks: WebhookService
    api: PaymentAPI

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        payment_settings: Optional[PaymentSettings] = None,
        *,
        gateway: Optional[PaymentGateway] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        event_bus: Optional[PaymentEventBus] = None,
    ) -> "AppContext":
        settings = settings or default_settings
        payment_settings = payment_settings or default_payment_settings

        engine = build_engine(settings.database.url, echo=settings.database.echo)
        session_factory = build_session_factory(engine)
        uow_factory = make_uow_factory(session_factory)

        gateway = gateway or StripeClient.from_settings(payment_settings, transport=transport)
        verifier = WebhookSignatureVerifier(
            payment_settings.stripe.webhook_secret,
            tolerance_seconds=payment_settings.webhook.tolerance_seconds,
        )
        event_bus = event_bus or PaymentEventBus()

        payments = PaymentService(gateway, uow_factory, settings=payment_settings, event_bus=event_bus)
        webhooks = WebhookService(verifier, uow_factory, event_bus)

        if not gateway.is_configured:
            logger.warning("payment_processor_not_configured")
        if not verifier.is_configured:
            logger.warning("webhook_secret_not_configured")

        return cls(
            settings=settings,
            payment_settings=payment_settings,
            engine=engine,
            session_factory=session_factory,
            uow_factory=uow_factory,
            gateway=gateway,
            verifier=verifier,
            event_bus=event_bus,
            payments=payments,
            webhooks=webhooks,
            api=PaymentAPI(payments, webhooks),
        )

    async def startup(self) -> None:
        if self.settings.AUTO_CREATE_TABLES:
            await create_tables(self.engine)
            logger.info("database_initialized", url=self.engine.url.render_as_string(hide_password=True))

    async def aclose(self) -> None:
        try:
            await self.gateway.aclose()
        finally:
            await self.engine.dispose()
        logger.info("app_context_closed")
