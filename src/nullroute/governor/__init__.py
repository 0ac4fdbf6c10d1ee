"""Outbound request governor for the exchange API."""

from nullroute.governor.governor import DEFAULT_REQUESTS_PER_SECOND, RequestGovernor
from nullroute.governor.requests import (
    CreateTransactionRequest,
    ExchangeRequest,
    FeeEstimateRequest,
    Priority,
    RequestKind,
    StatusRequest,
    WorkItem,
)

__all__ = [
    "RequestGovernor",
    "DEFAULT_REQUESTS_PER_SECOND",
    "ExchangeRequest",
    "CreateTransactionRequest",
    "StatusRequest",
    "FeeEstimateRequest",
    "Priority",
    "RequestKind",
    "WorkItem",
]
