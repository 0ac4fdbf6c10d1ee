"""Chain address validation.

The exchange API is told where to pay out and where the user must deposit;
both addresses are checked locally against the network implied by the
currency before anything is accepted.
"""

import re

import base58

from nullroute.errors import ValidationError

# Exchange currency ticker -> network
CURRENCY_NETWORKS = {
    "sol": "solana",
    "usdcsol": "solana",
    "usdtsol": "solana",
    "eth": "ethereum",
    "usdterc20": "ethereum",
    "usdc": "ethereum",
}

SOLANA_PUBKEY_LENGTH = 32
_EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def network_for_currency(currency: str) -> str:
    """Resolve the network a currency ticker settles on."""
    network = CURRENCY_NETWORKS.get(currency.strip().lower())
    if network is None:
        raise ValidationError(f"Unsupported currency: {currency}")
    return network


def is_valid_public_key(address: str) -> bool:
    """Check that address is a base58-encoded 32-byte Solana public key."""
    if not address or not isinstance(address, str):
        return False
    try:
        decoded = base58.b58decode(address)
    except ValueError:
        return False
    return len(decoded) == SOLANA_PUBKEY_LENGTH


def is_valid_evm_address(address: str) -> bool:
    return bool(address) and bool(_EVM_ADDRESS_RE.match(address))


_VALIDATORS = {
    "solana": is_valid_public_key,
    "ethereum": is_valid_evm_address,
}


def is_valid_address(address: str, network: str) -> bool:
    """Check an address against a network's format."""
    validator = _VALIDATORS.get(network)
    if validator is None:
        return False
    return validator(address)


def validate_address(address: str, currency: str) -> str:
    """Validate and normalise an address for the given currency.

    Returns:
        The trimmed address

    Raises:
        ValidationError: If the address is empty or not valid for the
            currency's network
    """
    if not address or not address.strip():
        raise ValidationError("Recipient address is required")

    address = address.strip()
    network = network_for_currency(currency)
    if not is_valid_address(address, network):
        raise ValidationError(f"Invalid {network} address for {currency.lower()}: {address}")
    return address
