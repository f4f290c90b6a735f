"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Persistence ("memory" or "sql")
    repository_backend: str = "memory"
    database_url: str = "postgresql+asyncpg://ordercore:ordercore_dev_password@db:5432/ordercore"

    # Authentication
    ordercore_api_key: str = "dev-api-key-change-in-production"
    cron_secret: str = "dev-cron-secret-change-in-production"

    # Helpship fallback credentials (per-organization settings take precedence)
    helpship_client_id: str | None = None
    helpship_client_secret: str | None = None
    helpship_token_url: str = "https://helpship-auth-develop.azurewebsites.net/connect/token"
    helpship_api_url: str = "https://helpship-api-develop.azurewebsites.net"
    helpship_development_token_url: str = "https://helpship-auth-develop.azurewebsites.net/connect/token"
    helpship_development_api_url: str = "https://helpship-api-develop.azurewebsites.net"
    helpship_environment: str = "production"
    helpship_scope: str = "helpship.api"
    helpship_timeout_seconds: float = 30.0
    helpship_client_ttl_seconds: int = 300
    helpship_token_refresh_margin_seconds: int = 300
    helpship_country_code: str = "RO"

    # Meta Conversions API
    meta_graph_api_url: str = "https://graph.facebook.com"
    meta_graph_api_version: str = "v21.0"
    meta_timeout_seconds: float = 10.0

    # Conversion outbox retries
    conversion_max_attempts: int = 5
    conversion_retry_batch_size: int = 10
    conversion_retry_base_minutes: int = 5

    # Order lifecycle
    default_order_series: str = "VLR"
    default_duplicate_order_days: int = 14

    # Background work
    background_max_concurrency: int = 10

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
