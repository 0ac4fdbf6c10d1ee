"""FastAPI dependencies resolving the per-process services."""

from fastapi import HTTPException, Request

from nullroute.chain.solana import SolanaClient
from nullroute.governor import RequestGovernor
from nullroute.services.transfer_service import TransferService


def get_governor(request: Request) -> RequestGovernor:
    return request.app.state.governor


def get_transfer_service(request: Request) -> TransferService:
    return request.app.state.transfer_service


def get_solana_client(request: Request) -> SolanaClient:
    solana = getattr(request.app.state, "solana", None)
    if solana is None:
        raise HTTPException(status_code=503, detail="Solana RPC is not configured")
    return solana
