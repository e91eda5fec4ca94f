"""Configuration management for the portfolio sync client."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file from config directory or project root
config_env = Path(__file__).parent.parent.parent / "config" / ".env"
if config_env.exists():
    load_dotenv(config_env)
else:
    load_dotenv()


MIN_SYNC_INTERVAL_MINUTES = 5
MAX_SYNC_INTERVAL_MINUTES = 1440
DEFAULT_SYNC_INTERVAL_MINUTES = 30


def clamp_interval_minutes(value: Optional[int]) -> int:
    """Clamp an auto-sync interval to the supported range."""
    if value is None:
        return DEFAULT_SYNC_INTERVAL_MINUTES
    return max(MIN_SYNC_INTERVAL_MINUTES, min(MAX_SYNC_INTERVAL_MINUTES, int(value)))


class Config:
    """Application configuration."""

    def __init__(self) -> None:
        """Initialize configuration from environment variables."""
        # Sync server settings
        self.server_url = os.getenv("PORTFOLIO_SYNC_SERVER_URL", "")
        self.user_id = os.getenv("PORTFOLIO_SYNC_USER_ID", "")
        self.http_timeout = float(os.getenv("PORTFOLIO_SYNC_HTTP_TIMEOUT", "15"))

        # Local state (tokens, device id, goal settings)
        default_state_path = str(Path.home() / ".portfolio-sync" / "state.json")
        self.state_file = Path(
            os.getenv("PORTFOLIO_SYNC_STATE_FILE", default_state_path)
        )

        # Auto sync
        self.sync_interval_minutes = clamp_interval_minutes(
            int(
                os.getenv(
                    "PORTFOLIO_SYNC_INTERVAL_MINUTES",
                    str(DEFAULT_SYNC_INTERVAL_MINUTES),
                )
            )
        )

        # Logging
        self.log_level = os.getenv("PORTFOLIO_SYNC_LOG_LEVEL", "INFO")
        log_file = os.getenv("PORTFOLIO_SYNC_LOG_FILE")
        self.log_file = Path(log_file) if log_file else None

        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """Ensure required directories exist."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)


def get_config() -> Config:
    """Get application configuration."""
    return Config()
