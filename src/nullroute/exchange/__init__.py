"""Exchange API clients.

Providers:
- ChangeNOW: the external routing service that moves funds from the
  deposit address to the recipient
- Dry run: in-memory simulation for development and tests
"""

from nullroute.exchange.backoff import BackoffPolicy
from nullroute.exchange.base import (
    TERMINAL_STATUSES,
    ExchangeProvider,
    ExchangeStatus,
    FeeEstimate,
    StatusRecord,
    TransferOutcome,
)
from nullroute.exchange.changenow import ChangeNowClient
from nullroute.exchange.dry_run import DryRunExchange
from nullroute.exchange.factory import create_backoff_policy, create_exchange_client

__all__ = [
    # Base types
    "ExchangeProvider",
    "ExchangeStatus",
    "TERMINAL_STATUSES",
    "TransferOutcome",
    "StatusRecord",
    "FeeEstimate",
    "BackoffPolicy",
    # Providers
    "ChangeNowClient",
    "DryRunExchange",
    # Factory functions
    "create_backoff_policy",
    "create_exchange_client",
]
