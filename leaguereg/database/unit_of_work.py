"""
Unit of work wrapping one AsyncSession transaction.

The orchestrators receive a RegistrationUnitOfWork and finish it with exactly
one commit() or rollback(). Leaving the context without doing either, or
leaving it through an exception (cancellation included), rolls back.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from leaguereg.database.db import AsyncSessionLocal

logger = logging.getLogger(__name__)


class UnitOfWorkError(RuntimeError):
    """Raised when a unit of work is finished twice or used outside its context."""


class ConflictError(ValueError):
    """Raised when a registration was changed by a concurrent request."""


class RegistrationUnitOfWork:
    """
    Async context manager owning one session and its transaction.

    Usage:
        async with RegistrationUnitOfWork() as uow:
            uow.session.add(...)
            await uow.commit()
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory or AsyncSessionLocal
        self._session: Optional[AsyncSession] = None
        self._finished = False

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise UnitOfWorkError("Unit of work used outside of its context")
        return self._session

    @property
    def finished(self) -> bool:
        return self._finished

    async def __aenter__(self) -> "RegistrationUnitOfWork":
        if self._session is not None:
            raise UnitOfWorkError("Unit of work already entered")
        self._session = self._session_factory()
        self._finished = False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if not self._finished:
                if exc_type is not None:
                    logger.info(f"Rolling back unit of work after {exc_type.__name__}")
                await self._rollback_session()
                self._finished = True
        finally:
            await self.session.close()
            self._session = None

    def _begin_finish(self, action: str) -> None:
        if self._session is None:
            raise UnitOfWorkError(f"Cannot {action} outside of the unit of work context")
        if self._finished:
            raise UnitOfWorkError(f"Cannot {action}: unit of work already committed or rolled back")
        self._finished = True

    async def commit(self) -> None:
        """
        Commit the transaction.

        Raises:
            ConflictError: A versioned row was modified by someone else
            UnitOfWorkError: Already committed or rolled back
        """
        self._begin_finish("commit")
        try:
            await self.session.commit()
        except StaleDataError as e:
            await self._rollback_session()
            raise ConflictError("Registration was modified by another request; please retry") from e
        except BaseException:
            await self._rollback_session()
            raise

    async def rollback(self) -> None:
        """Discard every pending change."""
        self._begin_finish("rollback")
        await self._rollback_session()

    async def _rollback_session(self) -> None:
        await self.session.rollback()
