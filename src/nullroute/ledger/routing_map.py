"""Routing Map - internal transfer reference to exchange transaction id.

Status polling for a transfer needs the exchange's id, which is only known
once the exchange transaction is created. The mapping is kept in the
database so it survives restarts and is shared between instances.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nullroute.errors import PersistenceError
from nullroute.ledger.models import TransactionRouting

logger = logging.getLogger(__name__)


class RoutingMap:
    """Durable internal_ref -> external_ref lookup.

    At most one external_ref per internal_ref, and it never changes.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from nullroute.ledger.database import get_session_factory

            self._session_factory = get_session_factory()
        return self._session_factory

    async def store(self, internal_ref: str, external_ref: str) -> None:
        """Store a mapping.

        Storing the same pair twice is a no-op.

        Raises:
            PersistenceError: If the store is unreachable, or internal_ref is
                already mapped to a different external_ref
        """
        try:
            async with self.session_factory() as session:
                existing = await self._get(session, internal_ref)
                if existing is not None:
                    if existing.external_ref == external_ref:
                        return
                    logger.error(
                        f"Refusing to remap {internal_ref}: already {existing.external_ref}, "
                        f"got {external_ref}"
                    )
                    raise PersistenceError(
                        f"Transaction {internal_ref} is already mapped to a different "
                        f"routing transaction"
                    )

                session.add(TransactionRouting(internal_ref=internal_ref, external_ref=external_ref))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to store routing mapping {internal_ref} -> {external_ref}: {e}")
            raise PersistenceError(f"Failed to store routing mapping: {e}")

        logger.info(f"Stored routing mapping: {internal_ref} -> {external_ref}")

    async def lookup(self, internal_ref: str) -> Optional[str]:
        """Get the external_ref for internal_ref, or None if never stored.

        Raises:
            PersistenceError: If the store is unreachable
        """
        try:
            async with self.session_factory() as session:
                entry = await self._get(session, internal_ref)
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up routing mapping for {internal_ref}: {e}")
            raise PersistenceError(f"Failed to look up routing mapping: {e}")

        return entry.external_ref if entry is not None else None

    @staticmethod
    async def _get(session: AsyncSession, internal_ref: str) -> Optional[TransactionRouting]:
        stmt = select(TransactionRouting).where(TransactionRouting.internal_ref == internal_ref)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
