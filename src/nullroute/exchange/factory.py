"""Factory for the exchange API client.

Creates the real ChangeNOW client when dry-run is off (an API key is then
required), otherwise the simulated exchange.
"""

import logging
from typing import Optional

from nullroute.config import Settings, get_settings
from nullroute.errors import ConfigurationError
from nullroute.exchange.backoff import BackoffPolicy
from nullroute.exchange.base import ExchangeProvider

logger = logging.getLogger(__name__)


def create_backoff_policy(settings: Optional[Settings] = None) -> BackoffPolicy:
    """Retry policy for exchange creation from settings."""
    settings = settings or get_settings()
    return BackoffPolicy(
        max_attempts=settings.exchange_max_retries + 1,
        base_delay=settings.exchange_retry_base_delay,
        increment=settings.exchange_retry_base_delay,
    )


def create_exchange_client(settings: Optional[Settings] = None) -> ExchangeProvider:
    """Create the exchange client for the current configuration."""
    settings = settings or get_settings()

    if not settings.dry_run:
        if not settings.has_exchange_key:
            # Simulated deposit addresses are not spendable by anyone
            raise ConfigurationError(
                "Exchange API key is not configured. Set CHANGENOW_API_KEY or enable DRY_RUN."
            )

        from nullroute.exchange.changenow import ChangeNowClient

        return ChangeNowClient(
            api_key=settings.changenow_api_key,
            base_url=settings.changenow_api_url,
            timeout=settings.exchange_timeout_seconds,
            rate_timeout=settings.exchange_rate_timeout_seconds,
            backoff=create_backoff_policy(settings),
        )

    from nullroute.exchange.dry_run import DryRunExchange

    logger.info("Using simulated exchange (dry run)")
    return DryRunExchange()
