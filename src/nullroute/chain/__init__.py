"""Chain helpers: address validation and the Solana RPC client."""

from nullroute.chain.addresses import (
    is_valid_address,
    is_valid_public_key,
    network_for_currency,
    validate_address,
)
from nullroute.chain.solana import (
    LAMPORTS_PER_SOL,
    SolanaClient,
    lamports_to_sol,
    sol_to_lamports,
)

__all__ = [
    "is_valid_address",
    "is_valid_public_key",
    "network_for_currency",
    "validate_address",
    "LAMPORTS_PER_SOL",
    "SolanaClient",
    "lamports_to_sol",
    "sol_to_lamports",
]
