"""Exchange API interface and result types."""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from nullroute.errors import IntegrityError, ValidationError

Amount = Union[Decimal, int, float, str]


class ExchangeStatus(str, Enum):
    """Lifecycle of an exchange transaction, as reported by the exchange API.

    waiting -> confirming -> exchanging -> sending -> finished, with
    failed, refunded and expired as alternative terminal states.
    """

    WAITING = "waiting"
    CONFIRMING = "confirming"
    EXCHANGING = "exchanging"
    SENDING = "sending"
    FINISHED = "finished"
    FAILED = "failed"
    REFUNDED = "refunded"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        return self is ExchangeStatus.FINISHED

    @classmethod
    def parse(cls, value: object) -> "ExchangeStatus":
        """Parse a status token, rejecting anything outside the vocabulary.

        Pre-processing tokens (new, verifying, hold) map onto the nearest
        non-terminal state.
        """
        token = str(value).lower()
        try:
            return cls(STATUS_ALIASES.get(token, token))
        except ValueError:
            raise IntegrityError(f"Invalid response: unknown exchange status {value!r}")


# Exchange tokens outside the vocabulary that are still in progress
STATUS_ALIASES = {
    "new": "waiting",
    "verifying": "confirming",
    "hold": "confirming",
}

TERMINAL_STATUSES = frozenset(
    {
        ExchangeStatus.FINISHED,
        ExchangeStatus.FAILED,
        ExchangeStatus.REFUNDED,
        ExchangeStatus.EXPIRED,
    }
)


@dataclass(frozen=True)
class TransferOutcome:
    """Result of a successful exchange creation."""

    id: str
    payin_address: str  # User funds this
    payout_address: str  # Destination, must equal the requested address
    from_currency: str
    to_currency: str
    from_amount: Optional[Decimal]
    to_amount: Optional[Decimal]
    status: ExchangeStatus = ExchangeStatus.WAITING
    payin_extra_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payin_address": self.payin_address,
            "payout_address": self.payout_address,
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "from_amount": str(self.from_amount) if self.from_amount is not None else None,
            "to_amount": str(self.to_amount) if self.to_amount is not None else None,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class StatusRecord:
    """Point-in-time status of an exchange transaction."""

    id: str
    status: ExchangeStatus
    payin_address: Optional[str] = None
    payout_address: Optional[str] = None
    from_currency: Optional[str] = None
    to_currency: Optional[str] = None
    from_amount: Optional[Decimal] = None
    to_amount: Optional[Decimal] = None
    payin_hash: Optional[str] = None
    payout_hash: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class FeeEstimate:
    """Fee breakdown for sending an amount through the exchange."""

    send_amount: Decimal
    receive_amount: Decimal
    fee_amount: Decimal
    fee_percentage: Decimal
    is_valid: bool


def parse_amount(value: Optional[Amount], field_name: str = "amount") -> Optional[Decimal]:
    """Convert a caller-supplied amount to Decimal.

    Returns None when value is None. Raises ValidationError when the value
    is not a positive, finite number.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name}: must be a positive number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"Invalid {field_name}: must be a positive number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field_name}: must be a positive number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"Invalid {field_name}: must be a positive number")
    return amount


def check_exchange_amounts(
    from_amount: Optional[Amount], to_amount: Optional[Amount]
) -> tuple[Optional[Decimal], Optional[Decimal]]:
    """Require exactly one of from_amount / to_amount."""
    if from_amount is None and to_amount is None:
        raise ValidationError("Either fromAmount or toAmount must be provided")
    if from_amount is not None and to_amount is not None:
        raise ValidationError("Provide only one of fromAmount or toAmount")
    return parse_amount(from_amount, "fromAmount"), parse_amount(to_amount, "toAmount")


class ExchangeProvider(ABC):
    """Abstract base class for exchange API clients."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        pass

    @abstractmethod
    async def create_exchange(
        self,
        from_currency: str,
        to_currency: str,
        address: str,
        from_amount: Optional[Amount] = None,
        to_amount: Optional[Amount] = None,
        flow: str = "standard",
        extra_id: Optional[str] = None,
    ) -> TransferOutcome:
        """
        Create an exchange transaction.

        Args:
            from_currency: Currency the user deposits (e.g., "sol")
            to_currency: Currency paid out (e.g., "sol")
            address: Destination (payout) address
            from_amount: Amount to send (exclusive with to_amount)
            to_amount: Amount to receive (exclusive with from_amount)
            flow: "standard" or "fixed-rate"
            extra_id: Memo/tag for currencies that need one

        Returns:
            TransferOutcome with the deposit address the user must fund
        """
        pass

    @abstractmethod
    async def get_status(self, external_ref: str) -> StatusRecord:
        """Get the current status of an exchange transaction."""
        pass

    @abstractmethod
    async def estimate_fees(
        self, from_currency: str, to_currency: str, from_amount: Amount
    ) -> FeeEstimate:
        """Estimate what the recipient receives for from_amount."""
        pass
