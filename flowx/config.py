import logging

from pydantic_settings import BaseSettings
from pathlib import Path

# Get the repository root directory (parent of flowx directory)
REPO_ROOT = Path(__file__).parent.parent.absolute()

class Settings(BaseSettings):
    """Application settings."""

    # API settings (reference store server)
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_RELOAD: bool = True

    # Version and environment
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Canvas synchronization
    AUTOSAVE_DELAY_MS: int = 2000
    NEW_NODE_SAVE_DELAY_MS: int = 100

    # Optimistic mutation error handling
    RETRY_DELAY_MS: int = 1000
    MAX_RETRY_COUNT: int = 3

    # Reference store settings
    STORE_SNAPSHOT_FILE: str = ""  # empty keeps the store in memory only
    STORE_LATENCY_MS: int = 0

    class Config:
        env_file = ".env"

settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the root logger."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
