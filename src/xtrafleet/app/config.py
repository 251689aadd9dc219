"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from the project root regardless of CWD
_PROJECT_ROOT = Path(__file__).resolve().parents[3]
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./xtrafleet.db"

    # Auth / JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 1440

    # Email
    sendgrid_api_key: str = ""
    notification_from_email: str = "noreply@xtrafleet.com"

    # CORS / Frontend
    cors_origins: str = "http://localhost:3000"
    frontend_url: str = "https://xtrafleet.com"

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    match_fee_cents: int = 2500  # $25.00

    # Business rules
    invitation_expiry_days: int = 7
    compliance_warning_days: int = 30

    # Uploaded compliance documents
    uploads_dir: str = str(_PROJECT_ROOT / "uploads")
    public_uploads_url: str = "/uploads"

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin (LAN IPs, etc.).
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
