"""Nullroute - routed SOL transfers with a rate-governed exchange client."""

__version__ = "0.1.0"
