"""Wallet endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query

from nullroute.api.contracts import (
    BalanceResponse,
    TransactionResponse,
    WalletConnectRequest,
    WalletDisconnectRequest,
    WalletResponse,
)
from nullroute.api.dependencies import get_solana_client
from nullroute.chain.addresses import is_valid_public_key
from nullroute.chain.solana import SolanaClient, lamports_to_sol
from nullroute.ledger.database import get_db
from nullroute.ledger.repository import LedgerRepository

router = APIRouter(prefix="/wallets", tags=["Wallets"])


@router.get("", response_model=list[WalletResponse])
async def list_wallets(
    include_inactive: bool = Query(False, description="Include disconnected wallets"),
) -> list[WalletResponse]:
    """List connected wallets."""
    async with get_db() as session:
        wallets = await LedgerRepository(session).list_wallets(active_only=not include_inactive)
        return [WalletResponse.from_model(wallet) for wallet in wallets]


@router.post("/connect", response_model=WalletResponse)
async def connect_wallet(request: WalletConnectRequest) -> WalletResponse:
    """Register (or re-activate) a connected wallet."""
    async with get_db() as session:
        wallet = await LedgerRepository(session).upsert_wallet(request.public_key)
        return WalletResponse.from_model(wallet)


@router.post("/disconnect", response_model=WalletResponse)
async def disconnect_wallet(request: WalletDisconnectRequest) -> WalletResponse:
    """Mark a wallet as disconnected. Its transfer history is kept."""
    public_key = request.public_key.strip()
    if not is_valid_public_key(public_key):
        raise HTTPException(status_code=400, detail="Invalid Solana public key")

    async with get_db() as session:
        wallet = await LedgerRepository(session).deactivate_wallet(public_key)
        if wallet is None:
            raise HTTPException(status_code=404, detail="Wallet not found")
        return WalletResponse.from_model(wallet)


@router.get("/{public_key}/balance", response_model=BalanceResponse)
async def get_balance(
    public_key: str,
    solana: SolanaClient = Depends(get_solana_client),
) -> BalanceResponse:
    """Get the on-chain SOL balance of a wallet."""
    lamports = await solana.get_balance(public_key)
    return BalanceResponse(public_key=public_key, lamports=lamports, sol=lamports_to_sol(lamports))


@router.get("/{public_key}/transactions", response_model=list[TransactionResponse])
async def get_wallet_transactions(public_key: str) -> list[TransactionResponse]:
    """Get a wallet's transactions, newest first."""
    if not is_valid_public_key(public_key):
        raise HTTPException(status_code=400, detail="Invalid Solana public key")

    async with get_db() as session:
        repo = LedgerRepository(session)
        wallet = await repo.get_wallet_by_public_key(public_key)
        if wallet is None:
            raise HTTPException(status_code=404, detail="Wallet not found")
        transactions = await repo.get_transactions_by_wallet(wallet.id)
        return [TransactionResponse.from_model(tx) for tx in transactions]
