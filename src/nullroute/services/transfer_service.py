"""Transfer service - the flows behind the transaction endpoints.

A transfer is created by asking the exchange (through the governor) for a
deposit address that pays out to the recipient. The user then funds the
deposit address from their own wallet.

Once the exchange transaction exists it is real: failures to record it
locally are logged and flagged for reconciliation, but never turn the
user-visible result into an error.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nullroute.chain.addresses import is_valid_public_key
from nullroute.chain.solana import SolanaClient, sol_to_lamports
from nullroute.errors import IntegrityError, PersistenceError, ValidationError
from nullroute.exchange.base import (
    Amount,
    ExchangeStatus,
    FeeEstimate,
    StatusRecord,
    TransferOutcome,
    parse_amount,
)
from nullroute.governor import CreateTransactionRequest, RequestGovernor
from nullroute.ledger.models import Transaction, TransactionStatus
from nullroute.ledger.repository import LedgerRepository
from nullroute.ledger.routing_map import RoutingMap

logger = logging.getLogger(__name__)

TRANSFER_CURRENCY = "sol"

# Exchange terminal state -> transfer record status
TERMINAL_RECORD_STATUS = {
    ExchangeStatus.FINISHED: TransactionStatus.CONFIRMED,
    ExchangeStatus.FAILED: TransactionStatus.FAILED,
    ExchangeStatus.REFUNDED: TransactionStatus.FAILED,
    ExchangeStatus.EXPIRED: TransactionStatus.FAILED,
}


def generate_internal_ref() -> str:
    """Internal transfer reference shown to the user (21 url-safe chars)."""
    return secrets.token_urlsafe(16)[:21]


@dataclass
class TransferReceipt:
    """What the user needs to complete a transfer."""

    tx_signature: str
    deposit_address: str
    routing_transaction_id: str
    amount_sol: Decimal
    recipient_address: str
    expected_receive_amount: Optional[Decimal] = None
    needs_reconciliation: bool = False


@dataclass
class TransactionView:
    """A stored transfer plus its live exchange status, when available."""

    transaction: Transaction
    routing_status: Optional[StatusRecord] = None


class TransferService:
    """Procedure layer for fee estimates, transfers and status checks."""

    def __init__(
        self,
        governor: RequestGovernor,
        routing_map: Optional[RoutingMap] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        solana: Optional[SolanaClient] = None,
        poll_interval: float = 10.0,
        poll_max_attempts: int = 360,
    ):
        self.governor = governor
        self._session_factory = session_factory
        self.routing_map = routing_map or RoutingMap(session_factory)
        self.solana = solana
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from nullroute.ledger.database import get_session_factory

            self._session_factory = get_session_factory()
        return self._session_factory

    async def estimate_fees(self, amount_sol: Amount) -> FeeEstimate:
        """Estimate fees for sending amount_sol to another SOL address."""
        amount = parse_amount(amount_sol, "amount")
        if amount is None:
            raise ValidationError("Invalid amount")
        return await self.governor.enqueue_estimate_fees(
            TRANSFER_CURRENCY, TRANSFER_CURRENCY, amount
        )

    async def create_transfer(self, recipient_public_key: str, amount_sol: Amount) -> TransferReceipt:
        """Create a routed transfer to recipient_public_key.

        Raises:
            ValidationError: Bad recipient or amount (nothing was sent)
            IntegrityError: The exchange response failed validation
            ClientError, TransientError, ExchangeTimeoutError: Exchange call failed
        """
        recipient = (recipient_public_key or "").strip()
        if not is_valid_public_key(recipient):
            raise ValidationError("Invalid recipient public key")

        amount = parse_amount(amount_sol, "amount")
        if amount is None:
            raise ValidationError("Invalid amount")

        request = CreateTransactionRequest(
            address=recipient,
            from_currency=TRANSFER_CURRENCY,
            to_currency=TRANSFER_CURRENCY,
            from_amount=amount,
        )

        logger.info("[Transfer] Creating routing transaction...")
        try:
            outcome: TransferOutcome = await self.governor.enqueue_create_transaction(request)
        except IntegrityError as e:
            logger.critical(f"[Transfer] Exchange response rejected for {recipient}: {e}")
            raise

        internal_ref = generate_internal_ref()
        logger.info(
            f"[Transfer] Routing transaction created: {outcome.id} for {internal_ref} "
            f"(payin {outcome.payin_address}, {outcome.from_amount} -> {outcome.to_amount})"
        )

        problems = []
        try:
            await self.routing_map.store(internal_ref, outcome.id)
        except PersistenceError as e:
            logger.error(
                f"[Transfer] Routing mapping not stored for {internal_ref} -> {outcome.id}: {e}"
            )
            problems.append(f"routing mapping not stored ({outcome.id})")

        try:
            await self._record_transfer(internal_ref, recipient, amount, outcome, problems)
        except PersistenceError as e:
            logger.error(
                f"[Transfer] Transaction record not stored for {internal_ref} "
                f"(routing {outcome.id}, payin {outcome.payin_address}): {e}"
            )
            problems.append("transaction record not stored")

        return TransferReceipt(
            tx_signature=internal_ref,
            deposit_address=outcome.payin_address,
            routing_transaction_id=outcome.id,
            amount_sol=amount,
            recipient_address=recipient,
            expected_receive_amount=outcome.to_amount,
            needs_reconciliation=bool(problems),
        )

    async def _record_transfer(
        self,
        internal_ref: str,
        recipient: str,
        amount: Decimal,
        outcome: TransferOutcome,
        problems: list[str],
    ) -> None:
        try:
            async with self.session_factory() as session:
                repo = LedgerRepository(session)
                await repo.create_transaction(
                    tx_signature=internal_ref,
                    amount_lamports=sol_to_lamports(amount),
                    amount_sol=amount,
                    recipient_public_key=recipient,
                    payin_address=outcome.payin_address,
                    needs_reconciliation=bool(problems),
                    error_message="; ".join(problems) or None,
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save transaction: {e}")
        logger.info(f"[Transfer] Transaction saved: {internal_ref}")

    async def get_transaction(
        self, tx_signature: str, live: bool = True
    ) -> Optional[TransactionView]:
        """Get a stored transfer. Pending transfers include live exchange status
        unless live is False.

        Returns None if the transfer does not exist.
        """
        tx = await self._load(tx_signature)
        if tx is None:
            return None

        routing_status = None
        if live and tx.payin_address and tx.status == TransactionStatus.PENDING:
            try:
                external_ref = await self.routing_map.lookup(tx_signature)
                if external_ref:
                    routing_status = await self.governor.enqueue_get_status(external_ref)
            except Exception as e:
                logger.warning(f"[GetTransaction] Could not get routing status for {tx_signature}: {e}")

        return TransactionView(transaction=tx, routing_status=routing_status)

    async def get_routing_status(self, external_ref: str) -> StatusRecord:
        """Get exchange status directly by exchange transaction id."""
        return await self.governor.enqueue_get_status(external_ref)

    async def refresh_status(self, tx_signature: str) -> Optional[StatusRecord]:
        """Poll the exchange once and record terminal outcomes.

        Returns None when there is nothing to poll: the transfer is unknown,
        already settled, or has no routing mapping.
        """
        tx = await self._load(tx_signature)
        if tx is None or tx.status != TransactionStatus.PENDING:
            return None

        external_ref = await self.routing_map.lookup(tx_signature)
        if external_ref is None:
            logger.warning(f"[Monitor] No routing mapping for {tx_signature}; cannot poll")
            return None

        status = await self.governor.enqueue_get_status(external_ref)
        record_status = TERMINAL_RECORD_STATUS.get(status.status, TransactionStatus.PENDING)
        error_message = None
        if record_status == TransactionStatus.FAILED:
            error_message = f"Routing transaction {status.status.value}"

        try:
            async with self.session_factory() as session:
                await LedgerRepository(session).update_transaction_status(
                    tx_signature,
                    record_status,
                    error_message=error_message,
                    routing_status=status.status.value,
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update transaction status: {e}")

        if status.is_terminal:
            logger.info(f"[Monitor] {tx_signature} reached {status.status.value}")
        return status

    async def poll_until_terminal(
        self,
        tx_signature: str,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> Optional[StatusRecord]:
        """Poll until the exchange reports a terminal state, then stop.

        Returns the last status seen, or None if polling was not possible.
        """
        interval = self.poll_interval if interval is None else interval
        max_attempts = self.poll_max_attempts if max_attempts is None else max_attempts
        last = None
        for attempt in range(1, max_attempts + 1):
            status = await self.refresh_status(tx_signature)
            if status is None:
                return last
            last = status
            if status.is_terminal:
                return status
            logger.debug(
                f"[Monitor] {tx_signature} is {status.status.value} "
                f"(poll {attempt}/{max_attempts})"
            )
            await asyncio.sleep(interval)

        logger.warning(f"[Monitor] Gave up polling {tx_signature} after {max_attempts} attempts")
        return last

    async def confirm_transaction(self, tx_signature: str, chain_signature: str) -> TransactionStatus:
        """Confirm a funding transaction on-chain and record the result."""
        if self.solana is None:
            raise ValidationError("Solana RPC is not configured")

        confirmed = await self.solana.confirm_transaction(chain_signature)
        status = TransactionStatus.CONFIRMED if confirmed else TransactionStatus.FAILED
        error_message = None if confirmed else "Transaction failed or not confirmed"

        try:
            async with self.session_factory() as session:
                tx = await LedgerRepository(session).update_transaction_status(
                    tx_signature, status, error_message=error_message
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update transaction status: {e}")

        if tx is None:
            raise ValidationError(f"Transaction not found: {tx_signature}")
        return status

    async def _load(self, tx_signature: str) -> Optional[Transaction]:
        try:
            async with self.session_factory() as session:
                return await LedgerRepository(session).get_transaction_by_signature(tx_signature)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load transaction: {e}")
