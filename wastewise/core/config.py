"""Configuration management for wastewise."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="./data/wastewise.db", description="Path to the SQLite database file")

    # Resident Directory Configuration
    resident_directory_url: str = Field(
        default="http://127.0.0.1:8000/api/v1", description="Base URL of the portal's resident directory API"
    )
    resident_directory_api_key: str | None = Field(
        default=None, description="API key sent to the resident directory (optional)"
    )

    # Notification Dispatcher Configuration
    notification_webhook_url: str | None = Field(
        default=None, description="Webhook receiving task notifications (email/SMS/push fan-out happens downstream)"
    )

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # HTTP server
    host: str = Field(default="0.0.0.0", description="Interface uvicorn binds to")  # noqa: S104
    port: int = Field(default=8000, description="Port uvicorn listens on")

    environment: str = Field(default="development", description="Deployment environment name")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value

    @property
    def is_production(self) -> bool:
        """Whether the service runs in production."""
        return self.environment.lower() == "production"


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    DIRECTORY_TIMEOUT_SECONDS: int = 5
    NOTIFICATION_TIMEOUT_SECONDS: int = 5

    # Task field limits
    MAX_TITLE_LENGTH: int = 100
    MAX_DESCRIPTION_LENGTH: int = 500
    MAX_NOTES_LENGTH: int = 500
    MIN_REWARD_POINTS: int = 0
    MAX_REWARD_POINTS: int = 1000
    DEFAULT_REWARD_POINTS: int = 10
    MIN_IMPACT_SCORE: int = 1
    MAX_IMPACT_SCORE: int = 10
    DEFAULT_IMPACT_SCORE: int = 5

    # Pagination Defaults
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100
    DEFAULT_TASK_SORT: str = "-created_at"

    # Transition conflicts are retried this many times after a fresh read
    TRANSITION_CONFLICT_RETRIES: int = 1


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
