"""SQLAlchemy Unit of Work"""
from __future__ import annotations

from typing import Callable, Optional
import inspect

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import StorageError
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.repositories.payment_repository import (
    SQLAlchemyCustomerRepository,
    SQLAlchemyPaymentRepository,
    SQLAlchemyRefundRepository,
    SQLAlchemyWebhookEventRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """Unit of Work over one AsyncSession; one instance per transaction"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    def _bind_repositories(self, session: Optional[AsyncSession]) -> None:
        if session is None:
            self.payment_repository = None  # type: ignore[assignment]
            self.refund_repository = None  # type: ignore[assignment]
            self.customer_repository = None  # type: ignore[assignment]
            self.webhook_event_repository = None  # type: ignore[assignment]
            return
        self.payment_repository = SQLAlchemyPaymentRepository(session)
        self.refund_repository = SQLAlchemyRefundRepository(session)
        self.customer_repository = SQLAlchemyCustomerRepository(session)
        self.webhook_event_repository = SQLAlchemyWebhookEventRepository(session)

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self._bind_repositories(self.session)
        # readonly units rely on autobegin and never commit
        if not self._readonly and not self.session.in_transaction():
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        except SQLAlchemyError as commit_exc:
            raise StorageError(str(commit_exc)) from commit_exc
        finally:
            tx = getattr(self, "_transaction", None)
            if tx is not None and getattr(tx, "is_active", False):
                close = getattr(tx, "close", None)
                if callable(close):
                    res = close()
                    if inspect.isawaitable(res):
                        await res
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self._bind_repositories(None)
        if isinstance(exc, SQLAlchemyError):
            raise StorageError(str(exc)) from exc

    async def commit(self) -> None:
        if self._readonly:
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def make_uow_factory(session_factory: Callable[[], AsyncSession]) -> Callable[..., SQLAlchemyUnitOfWork]:
    """Bind a session factory; call the result as uow_factory(readonly=...)"""

    def factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)

    return factory
