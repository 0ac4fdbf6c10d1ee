"""Request and response schemas for the HTTP API."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from nullroute.chain.addresses import is_valid_public_key
from nullroute.exchange.base import FeeEstimate, StatusRecord
from nullroute.ledger.models import Transaction, Wallet
from nullroute.services.transfer_service import TransferReceipt


class WalletConnectRequest(BaseModel):
    """Register a connected wallet."""

    public_key: str = Field(..., min_length=32, max_length=64, description="Solana public key")

    @field_validator("public_key")
    @classmethod
    def validate_public_key(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_public_key(v):
            raise ValueError("Invalid Solana public key")
        return v


class WalletDisconnectRequest(BaseModel):
    """Disconnect a wallet."""

    public_key: str = Field(..., max_length=64, description="Solana public key")


class WalletResponse(BaseModel):
    id: int
    public_key: str
    is_active: bool

    @classmethod
    def from_model(cls, wallet: Wallet) -> "WalletResponse":
        return cls(id=wallet.id, public_key=wallet.public_key, is_active=wallet.is_active)


class BalanceResponse(BaseModel):
    public_key: str
    lamports: int
    sol: Decimal


class FeeEstimateResponse(BaseModel):
    """Fee breakdown for a transfer."""

    send_amount: Decimal
    receive_amount: Decimal
    fee_amount: Decimal = Field(..., ge=0)
    fee_percentage: Decimal = Field(..., ge=0)
    is_valid: bool

    @classmethod
    def from_estimate(cls, estimate: FeeEstimate) -> "FeeEstimateResponse":
        return cls(
            send_amount=estimate.send_amount,
            receive_amount=estimate.receive_amount,
            fee_amount=estimate.fee_amount,
            fee_percentage=estimate.fee_percentage,
            is_valid=estimate.is_valid,
        )


class TransferRequest(BaseModel):
    """Create a routed transfer."""

    recipient_public_key: str = Field(..., min_length=32, max_length=64)
    amount_sol: str = Field(..., description="Amount in SOL as a decimal string")


class TransferResponse(BaseModel):
    success: bool = True
    tx_signature: str = Field(..., description="Internal transfer reference")
    deposit_address: str = Field(..., description="Send the SOL amount here")
    routing_transaction_id: str
    amount_sol: Decimal
    recipient_address: str
    expected_receive_amount: Optional[Decimal] = None
    needs_reconciliation: bool = False

    @classmethod
    def from_receipt(cls, receipt: TransferReceipt) -> "TransferResponse":
        return cls(
            tx_signature=receipt.tx_signature,
            deposit_address=receipt.deposit_address,
            routing_transaction_id=receipt.routing_transaction_id,
            amount_sol=receipt.amount_sol,
            recipient_address=receipt.recipient_address,
            expected_receive_amount=receipt.expected_receive_amount,
            needs_reconciliation=receipt.needs_reconciliation,
        )


class RoutingStatusResponse(BaseModel):
    id: str
    status: str
    is_terminal: bool
    payin_address: Optional[str] = None
    payout_address: Optional[str] = None
    from_amount: Optional[Decimal] = None
    to_amount: Optional[Decimal] = None
    payin_hash: Optional[str] = None
    payout_hash: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: StatusRecord) -> "RoutingStatusResponse":
        return cls(
            id=record.id,
            status=record.status.value,
            is_terminal=record.is_terminal,
            payin_address=record.payin_address,
            payout_address=record.payout_address,
            from_amount=record.from_amount,
            to_amount=record.to_amount,
            payin_hash=record.payin_hash,
            payout_hash=record.payout_hash,
            updated_at=record.updated_at,
        )


class TransactionResponse(BaseModel):
    id: int
    tx_signature: str
    amount_sol: Decimal
    amount_lamports: int
    recipient_public_key: Optional[str] = None
    payin_address: Optional[str] = None
    status: str
    routing_status: Optional[str] = None
    needs_reconciliation: bool = False
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    live_status: Optional[RoutingStatusResponse] = None

    @classmethod
    def from_model(
        cls, tx: Transaction, live_status: Optional[StatusRecord] = None
    ) -> "TransactionResponse":
        return cls(
            id=tx.id,
            tx_signature=tx.tx_signature,
            amount_sol=tx.amount_sol,
            amount_lamports=tx.amount_lamports,
            recipient_public_key=tx.recipient_public_key,
            payin_address=tx.payin_address,
            status=str(getattr(tx.status, "value", tx.status)),
            routing_status=tx.routing_status,
            needs_reconciliation=tx.needs_reconciliation,
            error_message=tx.error_message,
            created_at=tx.created_at,
            live_status=RoutingStatusResponse.from_record(live_status) if live_status else None,
        )


class ConfirmRequest(BaseModel):
    signature: str = Field(..., min_length=32, max_length=128, description="Funding transaction signature")


class ConfirmResponse(BaseModel):
    tx_signature: str
    status: str


class QueueStatusResponse(BaseModel):
    queue_length: int
    processing: bool
