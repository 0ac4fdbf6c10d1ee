"""Simulated exchange for dry-run mode.

Behaves like the real API closely enough for the transfer flow to run end
to end: deposit addresses are well-formed, payout addresses echo the
request, and each status poll advances the transaction one state.
"""

import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import base58

from nullroute.chain.addresses import network_for_currency, validate_address
from nullroute.errors import ValidationError
from nullroute.exchange.base import (
    Amount,
    ExchangeProvider,
    ExchangeStatus,
    FeeEstimate,
    StatusRecord,
    TransferOutcome,
    check_exchange_amounts,
    parse_amount,
)
from nullroute.exchange.changenow import build_fee_estimate, validate_external_ref

logger = logging.getLogger(__name__)

# Simulated prices in USD, for cross-currency quotes
SIMULATED_PRICES: dict[str, Decimal] = {
    "sol": Decimal("225.00"),
    "usdcsol": Decimal("1.00"),
    "usdtsol": Decimal("1.00"),
    "eth": Decimal("3900.00"),
    "usdterc20": Decimal("1.00"),
    "usdc": Decimal("1.00"),
}

# Happy path, one step per poll
STATUS_PROGRESSION = [
    ExchangeStatus.WAITING,
    ExchangeStatus.CONFIRMING,
    ExchangeStatus.EXCHANGING,
    ExchangeStatus.SENDING,
    ExchangeStatus.FINISHED,
]


def _simulated_address(network: str) -> str:
    if network == "solana":
        return base58.b58encode(secrets.token_bytes(32)).decode()
    return "0x" + secrets.token_hex(20)


class DryRunExchange(ExchangeProvider):
    """In-memory stand-in for the exchange API."""

    def __init__(self, fee_percent: Decimal = Decimal("0.005")):
        self.fee_percent = fee_percent
        self._prices = SIMULATED_PRICES.copy()
        self._transactions: dict[str, dict] = {}

    @property
    def name(self) -> str:
        return "dry_run"

    def _convert(self, from_currency: str, to_currency: str, amount: Decimal) -> Decimal:
        from_price = self._prices.get(from_currency.lower())
        to_price = self._prices.get(to_currency.lower())
        if from_price is None or to_price is None:
            raise ValidationError(f"Unsupported pair: {from_currency} -> {to_currency}")
        gross = amount * from_price / to_price
        return (gross * (Decimal("1") - self.fee_percent)).quantize(Decimal("0.000000001"))

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
        address = validate_address(address, to_currency)
        from_amount, to_amount = check_exchange_amounts(from_amount, to_amount)

        if from_amount is not None:
            to_amount = self._convert(from_currency, to_currency, from_amount)
        else:
            # Invert the conversion for a fixed receive amount
            unit = self._convert(from_currency, to_currency, Decimal("1"))
            from_amount = (to_amount / unit).quantize(Decimal("0.000000001"))

        tx_id = secrets.token_hex(7)
        now = datetime.now(timezone.utc).isoformat()
        record = {
            "id": tx_id,
            "payin_address": _simulated_address(network_for_currency(from_currency)),
            "payout_address": address,
            "from_currency": from_currency.lower(),
            "to_currency": to_currency.lower(),
            "from_amount": from_amount,
            "to_amount": to_amount,
            "step": 0,
            "created_at": now,
        }
        self._transactions[tx_id] = record
        logger.info(f"[DRY RUN] Exchange created: {tx_id} ({from_amount} {from_currency} -> {to_amount} {to_currency})")

        return TransferOutcome(
            id=tx_id,
            payin_address=record["payin_address"],
            payout_address=address,
            from_currency=record["from_currency"],
            to_currency=record["to_currency"],
            from_amount=from_amount,
            to_amount=to_amount,
            status=ExchangeStatus.WAITING,
            created_at=now,
            updated_at=now,
        )

    async def get_status(self, external_ref: str) -> StatusRecord:
        external_ref = validate_external_ref(external_ref)
        record = self._transactions.get(external_ref)
        if record is None:
            raise ValidationError(f"Unknown routing transaction: {external_ref}")

        status = STATUS_PROGRESSION[min(record["step"], len(STATUS_PROGRESSION) - 1)]
        record["step"] += 1

        return StatusRecord(
            id=external_ref,
            status=status,
            payin_address=record["payin_address"],
            payout_address=record["payout_address"],
            from_currency=record["from_currency"],
            to_currency=record["to_currency"],
            from_amount=record["from_amount"],
            to_amount=record["to_amount"],
            payout_hash=secrets.token_hex(32) if status.is_success else None,
            created_at=record["created_at"],
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

    async def estimate_fees(
        self, from_currency: str, to_currency: str, from_amount: Amount
    ) -> FeeEstimate:
        send_amount = parse_amount(from_amount, "amount")
        if send_amount is None:
            raise ValidationError("Invalid amount")
        receive_amount = self._convert(from_currency, to_currency, send_amount)
        return build_fee_estimate(send_amount, receive_amount)
