"""ChangeNOW exchange API integration.

Creates and tracks the exchange transactions that carry a transfer from the
user's deposit to the recipient. The API key never leaves the server.

API docs: https://documenter.getpostman.com/view/8180765/SVfTPnM8
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from nullroute.chain.addresses import is_valid_address, network_for_currency, validate_address
from nullroute.errors import (
    ClientError,
    ConfigurationError,
    ExchangeTimeoutError,
    IntegrityError,
    TransientError,
    ValidationError,
)
from nullroute.exchange.backoff import BackoffPolicy
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

logger = logging.getLogger(__name__)

CHANGENOW_API_URL = "https://api.changenow.io/v2"
API_KEY_HEADER = "x-changenow-api-key"

FLOWS = ("standard", "fixed-rate")

_EXTERNAL_REF_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise IntegrityError(f"Invalid response: malformed amount {value!r}")


def validate_external_ref(external_ref: str) -> str:
    """External refs end up in a URL path; only allow id-safe characters."""
    if not external_ref or not _EXTERNAL_REF_RE.match(external_ref.strip()):
        raise ValidationError("Invalid routing transaction id")
    return external_ref.strip()


class ChangeNowClient(ExchangeProvider):
    """HTTP client for the ChangeNOW v2 API.

    Exchange creation is retried on transient failures according to the
    backoff policy. Status and rate lookups are single attempts; the Request
    Governor schedules repetition.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = CHANGENOW_API_URL,
        timeout: float = 25.0,
        rate_timeout: float = 15.0,
        backoff: Optional[BackoffPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            api_key: ChangeNOW API key
            base_url: API base URL
            timeout: Timeout for exchange creation (seconds)
            rate_timeout: Timeout for status and rate lookups (seconds)
            backoff: Retry policy for exchange creation
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_timeout = rate_timeout
        self.backoff = backoff or BackoffPolicy()
        self._transport = transport

    @property
    def name(self) -> str:
        return "ChangeNOW"

    def _headers(self) -> dict:
        if not self.api_key:
            raise ConfigurationError(
                "Exchange API key is not configured. Please set CHANGENOW_API_KEY."
            )
        return {"Content-Type": "application/json", API_KEY_HEADER: self.api_key}

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> dict:
        """Issue one HTTP request and map failures onto the error taxonomy."""
        headers = self._headers()
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.request(
                    method, url, headers=headers, params=params, json=json
                )
        except httpx.TimeoutException:
            logger.error(f"Exchange API timeout: {method} {path} after {timeout}s")
            raise ExchangeTimeoutError(
                "Request timeout: The exchange service took too long to respond. "
                "Please try again."
            )
        except httpx.TransportError as e:
            logger.warning(f"Exchange API network error: {method} {path}: {e}")
            raise TransientError(f"Network error contacting exchange service: {e}")

        if response.status_code >= 400:
            message = self._error_message(response)
            if response.status_code < 500:
                logger.warning(f"Exchange API rejected {method} {path}: {response.status_code} {message}")
                raise ClientError(message, status_code=response.status_code)
            raise TransientError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            raise IntegrityError("Invalid response format from exchange API")

        if not isinstance(data, dict):
            raise IntegrityError("Invalid response format from exchange API")
        return data

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if isinstance(data, dict):
            message = data.get("message") or data.get("error")
            if message:
                return str(message)
        return f"API error: {response.status_code} {response.reason_phrase}".strip()

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
        """Create an exchange transaction (POST /exchange)."""
        address = validate_address(address, to_currency)
        payin_network = network_for_currency(from_currency)
        from_amount, to_amount = check_exchange_amounts(from_amount, to_amount)
        if flow not in FLOWS:
            raise ValidationError(f"Invalid flow: {flow}")

        body: dict[str, Any] = {
            "fromCurrency": from_currency.lower(),
            "toCurrency": to_currency.lower(),
            "address": address,
            "flow": flow,
        }
        if from_amount is not None:
            body["fromAmount"] = float(from_amount)
        if to_amount is not None:
            body["toAmount"] = float(to_amount)
        if extra_id:
            body["extraId"] = extra_id

        async def attempt() -> dict:
            return await self._request("POST", "/exchange", self.timeout, json=body)

        data = await self.backoff.run(attempt, description="Exchange creation")
        outcome = self._parse_outcome(data, address, from_currency, payin_network)

        logger.info(
            f"Exchange created: {outcome.id} ({outcome.from_amount} {outcome.from_currency} "
            f"-> {outcome.to_amount} {outcome.to_currency})"
        )
        return outcome

    def _parse_outcome(
        self, data: dict, address: str, from_currency: str, payin_network: str
    ) -> TransferOutcome:
        """Validate a creation response before anything acts on it."""
        tx_id = data.get("id")
        if not tx_id or not isinstance(tx_id, str):
            raise IntegrityError("Invalid response: missing or invalid transaction ID")

        payin_address = data.get("payinAddress")
        if not payin_address or not isinstance(payin_address, str):
            raise IntegrityError("Invalid response: missing or invalid deposit address")

        if not is_valid_address(payin_address, payin_network):
            raise IntegrityError(
                f"Invalid deposit address format received - not a valid {payin_network} address"
            )

        payout_address = data.get("payoutAddress")
        if payout_address != address:
            logger.critical(
                f"Payout address mismatch on exchange {tx_id}: requested {address}, "
                f"got {payout_address}"
            )
            raise IntegrityError(
                "Invalid response: payout address mismatch - security validation failed"
            )

        return TransferOutcome(
            id=tx_id,
            payin_address=payin_address,
            payout_address=payout_address,
            from_currency=str(data.get("fromCurrency") or from_currency).lower(),
            to_currency=str(data.get("toCurrency") or "").lower(),
            from_amount=_decimal_or_none(data.get("fromAmount")),
            to_amount=_decimal_or_none(data.get("toAmount")),
            status=ExchangeStatus.parse(data.get("status") or ExchangeStatus.WAITING.value),
            payin_extra_id=data.get("payinExtraId"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )

    async def get_status(self, external_ref: str) -> StatusRecord:
        """Get exchange status (GET /exchange/{id}). Single attempt."""
        external_ref = validate_external_ref(external_ref)
        data = await self._request("GET", f"/exchange/{external_ref}", self.rate_timeout)
        if data.get("id") and str(data["id"]) != external_ref:
            logger.critical(
                f"Exchange returned transaction {data['id']} when asked for {external_ref}"
            )
            raise IntegrityError("Invalid response: transaction ID mismatch")

        return StatusRecord(
            id=str(data.get("id") or external_ref),
            status=ExchangeStatus.parse(data.get("status")),
            payin_address=data.get("payinAddress"),
            payout_address=data.get("payoutAddress"),
            from_currency=data.get("fromCurrency"),
            to_currency=data.get("toCurrency"),
            from_amount=_decimal_or_none(data.get("fromAmount")),
            to_amount=_decimal_or_none(data.get("toAmount")),
            payin_hash=data.get("payinHash"),
            payout_hash=data.get("payoutHash"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )

    async def get_exchange_rate(
        self,
        from_currency: str,
        to_currency: str,
        from_amount: Optional[Amount] = None,
        to_amount: Optional[Amount] = None,
    ) -> dict:
        """Rate lookup (GET /exchange/range)."""
        params = {
            "fromCurrency": from_currency.lower(),
            "toCurrency": to_currency.lower(),
        }
        if from_amount is not None:
            params["fromAmount"] = str(parse_amount(from_amount, "fromAmount"))
        if to_amount is not None:
            params["toAmount"] = str(parse_amount(to_amount, "toAmount"))

        return await self._request("GET", "/exchange/range", self.rate_timeout, params=params)

    async def estimate_fees(
        self, from_currency: str, to_currency: str, from_amount: Amount
    ) -> FeeEstimate:
        """Estimate the fee for sending from_amount, derived from the rate lookup."""
        send_amount = parse_amount(from_amount, "amount")
        if send_amount is None:
            raise ValidationError("Invalid amount")

        rate = await self.get_exchange_rate(from_currency, to_currency, from_amount=send_amount)
        receive_amount = _decimal_or_none(rate.get("toAmount")) or send_amount
        return build_fee_estimate(send_amount, receive_amount)


def build_fee_estimate(send_amount: Decimal, receive_amount: Decimal) -> FeeEstimate:
    """Derive the fee breakdown; fee and percentage never go negative."""
    fee_amount = send_amount - receive_amount
    fee_percentage = (fee_amount / send_amount) * 100 if send_amount > 0 else Decimal("0")

    return FeeEstimate(
        send_amount=send_amount,
        receive_amount=receive_amount,
        fee_amount=max(Decimal("0"), fee_amount),
        fee_percentage=max(Decimal("0"), fee_percentage),
        is_valid=receive_amount > 0 and send_amount > 0,
    )
