"""Pytest configuration and fixtures."""

import asyncio
import os
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DRY_RUN"] = "true"
os.environ["CHANGENOW_API_KEY"] = ""
os.environ["DEBUG"] = "false"

from nullroute.errors import ClientError
from nullroute.exchange.base import (
    ExchangeProvider,
    ExchangeStatus,
    FeeEstimate,
    StatusRecord,
    TransferOutcome,
)
from nullroute.ledger.models import Base
from nullroute.ledger.repository import LedgerRepository

# Well-formed Solana public keys
RECIPIENT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
OTHER_RECIPIENT = "So11111111111111111111111111111111111111112"
PAYIN = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"


class RecordingExchange(ExchangeProvider):
    """Exchange stub that records the order and time of every call.

    Calls for refs/addresses listed in fail_on raise ClientError. When gate
    is set, every call waits on it after signalling started.
    """

    def __init__(self, fail_on: Optional[set] = None, gate: Optional[asyncio.Event] = None):
        self.fail_on = fail_on or set()
        self.gate = gate
        self.started = asyncio.Event()
        self.calls: list[str] = []
        self.call_times: list[float] = []

    @property
    def name(self) -> str:
        return "recording"

    async def _enter(self, label: str) -> None:
        self.calls.append(label)
        self.call_times.append(asyncio.get_running_loop().time())
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()

    async def create_exchange(
        self,
        from_currency,
        to_currency,
        address,
        from_amount=None,
        to_amount=None,
        flow="standard",
        extra_id=None,
    ) -> TransferOutcome:
        await self._enter(f"create:{address}")
        if address in self.fail_on:
            raise ClientError("Address rejected", status_code=400)
        return TransferOutcome(
            id=f"ext{len(self.calls)}",
            payin_address=PAYIN,
            payout_address=address,
            from_currency=from_currency,
            to_currency=to_currency,
            from_amount=from_amount,
            to_amount=from_amount,
        )

    async def get_status(self, external_ref: str) -> StatusRecord:
        await self._enter(f"status:{external_ref}")
        if external_ref in self.fail_on:
            raise ClientError("Transaction not found", status_code=404)
        return StatusRecord(id=external_ref, status=ExchangeStatus.WAITING)

    async def estimate_fees(self, from_currency, to_currency, from_amount) -> FeeEstimate:
        await self._enter(f"fees:{from_amount}")
        return FeeEstimate(
            send_amount=from_amount,
            receive_amount=from_amount,
            fee_amount=Decimal("0"),
            fee_percentage=Decimal("0"),
            is_valid=True,
        )


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def broken_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory for a database with no tables, so every query fails."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture
def recording_exchange() -> RecordingExchange:
    return RecordingExchange()
