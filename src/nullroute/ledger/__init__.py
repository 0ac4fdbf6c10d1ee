"""Ledger module for wallets, transfers and routing entries."""

from nullroute.ledger.database import close_db, get_db, get_session_factory, init_db
from nullroute.ledger.models import (
    Transaction,
    TransactionRouting,
    TransactionStatus,
    Wallet,
)
from nullroute.ledger.repository import LedgerRepository
from nullroute.ledger.routing_map import RoutingMap

__all__ = [
    # Models
    "Wallet",
    "Transaction",
    "TransactionRouting",
    # Enums
    "TransactionStatus",
    # Database
    "get_db",
    "get_session_factory",
    "init_db",
    "close_db",
    "LedgerRepository",
    "RoutingMap",
]
