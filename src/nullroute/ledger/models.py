"""SQLAlchemy models for wallets, transfers and routing entries."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TransactionStatus(str, Enum):
    """Status of a user-initiated transfer."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class Wallet(Base):
    """Connected Solana wallet. The public key is the identity."""

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    public_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="wallet", lazy="selectin"
    )


class Transaction(Base):
    """A transfer routed through the exchange.

    tx_signature is the internal reference shown to the user; the exchange's
    own id lives in TransactionRouting.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    wallet_id: Mapped[Optional[int]] = mapped_column(ForeignKey("wallets.id"), nullable=True)
    amount_lamports: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount_sol: Mapped[Decimal] = mapped_column(Numeric(20, 9), nullable=False)
    recipient_public_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tx_signature: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    payin_address: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[TransactionStatus] = mapped_column(
        String(20), default=TransactionStatus.PENDING, nullable=False
    )
    routing_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    needs_reconciliation: Mapped[bool] = mapped_column(default=False, index=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    wallet: Mapped[Optional["Wallet"]] = relationship(back_populates="transactions")


class TransactionRouting(Base):
    """Internal reference -> exchange transaction id. Immutable once written."""

    __tablename__ = "transaction_routing"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    internal_ref: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    external_ref: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
