"""Transfer and routing-status endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query

from nullroute.api.contracts import (
    ConfirmRequest,
    ConfirmResponse,
    FeeEstimateResponse,
    RoutingStatusResponse,
    TransactionResponse,
    TransferRequest,
    TransferResponse,
)
from nullroute.api.dependencies import get_transfer_service
from nullroute.ledger.database import get_db
from nullroute.ledger.repository import LedgerRepository
from nullroute.services.transfer_service import TransferService

router = APIRouter(tags=["Transactions"])


@router.get("/transactions/estimate-fees", response_model=FeeEstimateResponse)
async def estimate_fees(
    amount_sol: str = Query(..., description="Amount in SOL"),
    service: TransferService = Depends(get_transfer_service),
) -> FeeEstimateResponse:
    """Estimate fees and the amount the recipient receives."""
    estimate = await service.estimate_fees(amount_sol)
    return FeeEstimateResponse.from_estimate(estimate)


@router.post("/transactions/transfer", response_model=TransferResponse)
async def create_transfer(
    request: TransferRequest,
    service: TransferService = Depends(get_transfer_service),
) -> TransferResponse:
    """Create a routed transfer.

    Returns the deposit address the sender must fund. The recipient is paid
    by the routing service, not by the sender's wallet.
    """
    receipt = await service.create_transfer(request.recipient_public_key, request.amount_sol)
    return TransferResponse.from_receipt(receipt)


@router.get("/transactions/recent", response_model=list[TransactionResponse])
async def get_recent_transactions(
    limit: int = Query(50, ge=1, le=200),
) -> list[TransactionResponse]:
    """Get the most recent transfers."""
    async with get_db() as session:
        transactions = await LedgerRepository(session).get_recent_transactions(limit)
        return [TransactionResponse.from_model(tx) for tx in transactions]


@router.get("/transactions/{tx_signature}", response_model=TransactionResponse)
async def get_transaction(
    tx_signature: str,
    service: TransferService = Depends(get_transfer_service),
) -> TransactionResponse:
    """Get a transfer, with live routing status while it is pending."""
    view = await service.get_transaction(tx_signature)
    if view is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return TransactionResponse.from_model(view.transaction, view.routing_status)


@router.post("/transactions/{tx_signature}/refresh", response_model=TransactionResponse)
async def refresh_transaction(
    tx_signature: str,
    service: TransferService = Depends(get_transfer_service),
) -> TransactionResponse:
    """Poll the routing service once and record terminal states."""
    status = await service.refresh_status(tx_signature)
    view = await service.get_transaction(tx_signature, live=False)
    if view is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return TransactionResponse.from_model(view.transaction, status)


@router.post("/transactions/{tx_signature}/confirm", response_model=ConfirmResponse)
async def confirm_transaction(
    tx_signature: str,
    request: ConfirmRequest,
    service: TransferService = Depends(get_transfer_service),
) -> ConfirmResponse:
    """Confirm the sender's funding transaction on-chain."""
    status = await service.confirm_transaction(tx_signature, request.signature)
    return ConfirmResponse(tx_signature=tx_signature, status=status.value)


@router.get("/routing/{external_ref}/status", response_model=RoutingStatusResponse)
async def get_routing_status(
    external_ref: str,
    service: TransferService = Depends(get_transfer_service),
) -> RoutingStatusResponse:
    """Get routing-service status by its transaction id."""
    record = await service.get_routing_status(external_ref)
    return RoutingStatusResponse.from_record(record)
