"""Central environment-driven settings for the payment tracker.

The process loads this once at startup. Wallet RPC endpoint, confirmation
policy and expiry windows are controlled by environment variables (see
`.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "xmrpay-tracker"
    log_level: str = "INFO"
    wallet_rpc_url: str = "http://127.0.0.1:38082"
    wallet_rpc_username: str | None = None
    wallet_rpc_password: str | None = None
    wallet_file: str | None = None
    wallet_password: str | None = None
    required_confirmations: int = 10
    rpc_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 5.0
    payment_ttl_seconds: int = 1800
    payment_ttl_blocks: int = 15
    allocation_attempts: int = 5
    api_key: str | None = None
    otel_exporter_otlp_endpoint: str = ""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
