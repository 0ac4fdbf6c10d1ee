"""Work submitted to the Request Governor.

Each operation kind is its own request type with typed parameters and a
fixed priority tier. Parameters are validated when the request is built, so
malformed input never reaches the waiting line.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional

from nullroute.chain.addresses import validate_address
from nullroute.exchange.base import (
    Amount,
    ExchangeProvider,
    FeeEstimate,
    StatusRecord,
    TransferOutcome,
    check_exchange_amounts,
    parse_amount,
)
from nullroute.exchange.changenow import FLOWS, validate_external_ref
from nullroute.errors import ValidationError


class RequestKind(str, Enum):
    """Operation kinds the governor dispatches."""

    CREATE_TRANSACTION = "create_transaction"
    GET_STATUS = "get_status"
    ESTIMATE_FEES = "estimate_fees"


class Priority:
    """Priority tiers. Higher is released first."""

    GET_STATUS = 10
    ESTIMATE_FEES = 5
    CREATE_TRANSACTION = 1


class ExchangeRequest(ABC):
    """Base class for governed exchange calls."""

    kind: ClassVar[RequestKind]
    priority: ClassVar[int]

    @abstractmethod
    async def dispatch(self, client: ExchangeProvider) -> Any:
        """Perform the call against the exchange client."""
        pass


@dataclass(frozen=True)
class CreateTransactionRequest(ExchangeRequest):
    """Create an exchange transaction paying out to address."""

    kind: ClassVar[RequestKind] = RequestKind.CREATE_TRANSACTION
    priority: ClassVar[int] = Priority.CREATE_TRANSACTION

    address: str
    from_currency: str = "sol"
    to_currency: str = "sol"
    from_amount: Optional[Decimal] = None
    to_amount: Optional[Decimal] = None
    flow: str = "standard"
    extra_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "address", validate_address(self.address, self.to_currency))
        from_amount, to_amount = check_exchange_amounts(self.from_amount, self.to_amount)
        object.__setattr__(self, "from_amount", from_amount)
        object.__setattr__(self, "to_amount", to_amount)
        if self.flow not in FLOWS:
            raise ValidationError(f"Invalid flow: {self.flow}")

    async def dispatch(self, client: ExchangeProvider) -> TransferOutcome:
        return await client.create_exchange(
            from_currency=self.from_currency,
            to_currency=self.to_currency,
            address=self.address,
            from_amount=self.from_amount,
            to_amount=self.to_amount,
            flow=self.flow,
            extra_id=self.extra_id,
        )


@dataclass(frozen=True)
class StatusRequest(ExchangeRequest):
    """Fetch the status of an exchange transaction."""

    kind: ClassVar[RequestKind] = RequestKind.GET_STATUS
    priority: ClassVar[int] = Priority.GET_STATUS

    external_ref: str

    def __post_init__(self):
        object.__setattr__(self, "external_ref", validate_external_ref(self.external_ref))

    async def dispatch(self, client: ExchangeProvider) -> StatusRecord:
        return await client.get_status(self.external_ref)


@dataclass(frozen=True)
class FeeEstimateRequest(ExchangeRequest):
    """Estimate fees for sending from_amount."""

    kind: ClassVar[RequestKind] = RequestKind.ESTIMATE_FEES
    priority: ClassVar[int] = Priority.ESTIMATE_FEES

    from_amount: Amount
    from_currency: str = "sol"
    to_currency: str = "sol"

    def __post_init__(self):
        object.__setattr__(self, "from_amount", parse_amount(self.from_amount, "amount"))
        if self.from_amount is None:
            raise ValidationError("Invalid amount")

    async def dispatch(self, client: ExchangeProvider) -> FeeEstimate:
        return await client.estimate_fees(self.from_currency, self.to_currency, self.from_amount)


@dataclass
class WorkItem:
    """A queued request and the future its submitter is waiting on."""

    request: ExchangeRequest
    priority: int
    future: asyncio.Future
    id: str = field(default="")

    def __post_init__(self):
        if not self.id:
            self.id = f"{self.request.kind.value}-{uuid.uuid4().hex}"
