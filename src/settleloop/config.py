"""Configuration management for SettleLoop."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

_DATA_DIR = Path.home() / ".settleloop"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    database_path: Path = _DATA_DIR / "settleloop.db"
    transactions_path: Path = _DATA_DIR / "transactions.json"

    # Banking
    default_account_id: str = "chequing-1"  # Receives deposits and requests
    currency: str = "CAD"

    # AutoSplit scanning
    lookback_days: int = 30  # Only transactions this recent are matched

    # Settlement reminders
    reminder_after_hours: int = 48  # Wait this long after initiating
    reminder_interval_hours: int = 24  # Minimum gap between reminders

    def __init__(self, **kwargs):
        """Initialize settings and create the data directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check your .env file and environment "
            f"variables. See .env.example for reference.\n"
            f"Error: {e}"
        ) from e
