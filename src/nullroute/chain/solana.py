"""Solana JSON-RPC client.

Only the calls the transfer flow needs: balance lookups for connected
wallets and signature confirmation.
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx

from nullroute.chain.addresses import is_valid_public_key
from nullroute.errors import TransientError, ValidationError

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

# Commitment levels that count as confirmed
CONFIRMED_STATUSES = ("confirmed", "finalized")


def lamports_to_sol(lamports: int) -> Decimal:
    """Convert lamports to SOL."""
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


def sol_to_lamports(sol: Decimal) -> int:
    """Convert SOL to lamports (truncating sub-lamport precision)."""
    return int(Decimal(sol) * LAMPORTS_PER_SOL)


class SolanaClient:
    """Minimal Solana RPC client."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._transport = transport

    async def _call(self, method: str, params: list) -> dict:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Solana RPC {method} failed: {e}")
            raise TransientError(f"Solana RPC unavailable: {e}")

        if response.status_code != 200:
            raise TransientError(
                f"Solana RPC error: {response.status_code}", status_code=response.status_code
            )

        data = response.json()
        if "error" in data:
            error = data["error"]
            message = error.get("message", "unknown error") if isinstance(error, dict) else error
            raise TransientError(f"Solana RPC {method} error: {message}")
        return data.get("result") or {}

    async def get_balance(self, public_key: str) -> int:
        """Get SOL balance in lamports."""
        if not is_valid_public_key(public_key):
            raise ValidationError("Invalid Solana public key")
        result = await self._call("getBalance", [public_key])
        return int(result.get("value", 0))

    async def confirm_transaction(self, signature: str) -> bool:
        """Check whether a signature reached confirmed commitment without error."""
        if not signature:
            raise ValidationError("Transaction signature is required")

        try:
            result = await self._call(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}],
            )
        except TransientError as e:
            logger.error(f"Transaction confirmation error for {signature}: {e}")
            return False

        statuses = result.get("value") or []
        status = statuses[0] if statuses else None
        if not status:
            return False
        if status.get("err") is not None:
            return False
        return status.get("confirmationStatus") in CONFIRMED_STATUSES
