"""Application settings and configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from nedapay.exceptions import MissingSecret


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "nedapay"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # "console" or "json"
    allowed_origins: str = "http://localhost:3000"
    public_host: str = "https://nedapay.xyz"

    # Database
    database_url: str = "sqlite:///./nedapay.db"

    # Referral codes
    code_max_attempts: int = 3
    referral_earning_rate: float = 0.1  # share of a referred user's first settled off-ramp

    # Admin analytics
    admin_api_key: str | None = None

    # Webhook secrets
    paycrest_client_secret: str | None = None
    sumsub_webhook_secret: str | None = None

    # Smile ID
    smile_id_partner_id: str | None = None
    smile_id_api_key: str | None = None
    smile_id_max_timestamp_age_minutes: int = 5

    def require_webhook_secrets(self) -> None:
        """Fail closed when a webhook secret is missing.

        Raises:
            MissingSecret: If any provider secret is unset or blank
        """
        required = {
            "PAYCREST_CLIENT_SECRET": self.paycrest_client_secret,
            "SUMSUB_WEBHOOK_SECRET": self.sumsub_webhook_secret,
        }
        missing = [name for name, value in required.items() if not value or not value.strip()]
        if missing:
            raise MissingSecret(", ".join(missing))


# Global settings instance
settings = Settings()
