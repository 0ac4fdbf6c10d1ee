"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/nullroute.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")
    dry_run: bool = Field(
        default=True, description="Use the simulated exchange instead of the real API"
    )

    # ======================
    # Exchange API (routing service)
    # ======================
    changenow_api_key: str = Field(default="", description="ChangeNOW API key")
    changenow_api_url: str = Field(
        default="https://api.changenow.io/v2", description="ChangeNOW API base URL"
    )
    exchange_timeout_seconds: float = Field(
        default=25.0, description="Timeout for exchange creation requests"
    )
    exchange_rate_timeout_seconds: float = Field(
        default=15.0, description="Timeout for rate and status requests"
    )
    exchange_max_retries: int = Field(
        default=2, ge=0, description="Retries after a transient failure on exchange creation"
    )
    exchange_retry_base_delay: float = Field(
        default=1.0, ge=0, description="First retry delay in seconds (grows linearly)"
    )

    # ======================
    # Request Governor
    # ======================
    exchange_rate_limit: float = Field(
        default=30.0, description="Request ceiling enforced by the exchange API (req/s)"
    )
    governor_requests_per_second: float = Field(
        default=25.0, gt=0, description="Target outbound request rate (req/s)"
    )

    # ======================
    # Solana
    # ======================
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )
    solana_network: str = Field(default="mainnet-beta", description="Solana cluster name")

    # ======================
    # Status polling
    # ======================
    status_poll_interval_seconds: float = Field(
        default=10.0, description="Delay between exchange status polls"
    )
    status_poll_max_attempts: int = Field(
        default=360, description="Give up polling after this many attempts"
    )

    @model_validator(mode="after")
    def _check_rate_margin(self) -> "Settings":
        if self.governor_requests_per_second >= self.exchange_rate_limit:
            raise ValueError(
                f"governor_requests_per_second ({self.governor_requests_per_second}) must stay "
                f"below exchange_rate_limit ({self.exchange_rate_limit})"
            )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_exchange_key(self) -> bool:
        """Check if the exchange API key is configured."""
        return bool(self.changenow_api_key.strip())

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "exchange": {
                "api_url": self.changenow_api_url,
                "api_key": "***" if self.has_exchange_key else "(not set)",
                "timeout_seconds": self.exchange_timeout_seconds,
                "max_retries": self.exchange_max_retries,
            },
            "governor": {
                "requests_per_second": self.governor_requests_per_second,
                "rate_limit": self.exchange_rate_limit,
            },
            "solana": {
                "rpc": self._redact_url(self.solana_rpc_url),
                "network": self.solana_network,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials and API keys from a URL."""
        if "api-key=" in url:
            url = url.split("api-key=", 1)[0] + "api-key=***"
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
