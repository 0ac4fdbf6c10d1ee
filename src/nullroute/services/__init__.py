"""Service layer for transfers."""

from nullroute.services.transfer_service import (
    TransactionView,
    TransferReceipt,
    TransferService,
)

__all__ = ["TransferService", "TransferReceipt", "TransactionView"]
