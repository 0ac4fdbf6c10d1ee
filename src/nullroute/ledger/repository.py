"""Repository for wallet and transaction records."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nullroute.ledger.models import Transaction, TransactionStatus, Wallet


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Wallet operations
    async def upsert_wallet(self, public_key: str) -> Wallet:
        """Get an existing wallet (re-activating it) or create a new one."""
        wallet = await self.get_wallet_by_public_key(public_key)

        if wallet is None:
            wallet = Wallet(public_key=public_key, is_active=True)
            self.session.add(wallet)
        else:
            wallet.is_active = True

        await self.session.flush()
        return wallet

    async def get_wallet_by_public_key(self, public_key: str) -> Optional[Wallet]:
        """Get wallet by public key."""
        stmt = select(Wallet).where(Wallet.public_key == public_key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def deactivate_wallet(self, public_key: str) -> Optional[Wallet]:
        """Mark a wallet disconnected. Returns None if it was never connected."""
        wallet = await self.get_wallet_by_public_key(public_key)
        if wallet is None:
            return None

        wallet.is_active = False
        await self.session.flush()
        return wallet

    async def list_wallets(self, active_only: bool = True) -> list[Wallet]:
        """List wallets, oldest first."""
        stmt = select(Wallet).order_by(Wallet.id)
        if active_only:
            stmt = stmt.where(Wallet.is_active.is_(True))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Transaction operations
    async def create_transaction(
        self,
        tx_signature: str,
        amount_lamports: int,
        amount_sol: Decimal,
        recipient_public_key: Optional[str] = None,
        payin_address: Optional[str] = None,
        wallet_id: Optional[int] = None,
        status: TransactionStatus = TransactionStatus.PENDING,
        needs_reconciliation: bool = False,
        error_message: Optional[str] = None,
    ) -> Transaction:
        """Create a transaction record."""
        tx = Transaction(
            wallet_id=wallet_id,
            tx_signature=tx_signature,
            amount_lamports=amount_lamports,
            amount_sol=amount_sol,
            recipient_public_key=recipient_public_key,
            payin_address=payin_address,
            status=status,
            needs_reconciliation=needs_reconciliation,
            error_message=error_message,
        )
        self.session.add(tx)
        await self.session.flush()
        return tx

    async def get_transaction_by_signature(self, tx_signature: str) -> Optional[Transaction]:
        """Get transaction by internal reference."""
        stmt = select(Transaction).where(Transaction.tx_signature == tx_signature)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_transactions_by_wallet(self, wallet_id: int, limit: int = 50) -> list[Transaction]:
        """Get a wallet's transactions, newest first."""
        stmt = (
            select(Transaction)
            .where(Transaction.wallet_id == wallet_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_recent_transactions(self, limit: int = 50) -> list[Transaction]:
        """Get the most recent transactions."""
        stmt = (
            select(Transaction)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_transaction_status(
        self,
        tx_signature: str,
        status: TransactionStatus,
        error_message: Optional[str] = None,
        routing_status: Optional[str] = None,
    ) -> Optional[Transaction]:
        """Update status of a transaction. Returns None if it does not exist."""
        tx = await self.get_transaction_by_signature(tx_signature)
        if tx is None:
            return None

        tx.status = status
        tx.error_message = error_message
        if routing_status is not None:
            tx.routing_status = routing_status
        await self.session.flush()
        return tx

    async def mark_needs_reconciliation(self, tx_signature: str, reason: str) -> Optional[Transaction]:
        """Flag a transaction whose records are out of step with the exchange."""
        tx = await self.get_transaction_by_signature(tx_signature)
        if tx is None:
            return None

        tx.needs_reconciliation = True
        tx.error_message = reason
        await self.session.flush()
        return tx

    async def get_unreconciled_transactions(self) -> list[Transaction]:
        """Get all transactions flagged for reconciliation."""
        stmt = (
            select(Transaction)
            .where(Transaction.needs_reconciliation.is_(True))
            .order_by(Transaction.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def clear_reconciliation(self, tx_signature: str) -> Optional[Transaction]:
        """Clear the reconciliation flag once records are repaired."""
        tx = await self.get_transaction_by_signature(tx_signature)
        if tx is None:
            return None

        tx.needs_reconciliation = False
        tx.error_message = None
        await self.session.flush()
        return tx
