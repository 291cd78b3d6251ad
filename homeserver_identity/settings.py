# homeserver_identity/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
import logging
from pathlib import Path

logger = logging.getLogger(__name__)
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s SETTINGS.PY - [%(levelname)s] - %(message)s'
    )

# settings.py lives at <root>/homeserver_identity/settings.py
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DOTENV_PATH = PROJECT_ROOT / ".env"

if DOTENV_PATH.exists():
    logger.info(f"SETTINGS.PY: .env file FOUND at explicit path: {DOTENV_PATH}")
else:
    logger.debug(
        f"SETTINGS.PY: .env file NOT FOUND at explicit path: {DOTENV_PATH}. "
        "Will rely on OS env vars or defaults."
    )


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    app_name: str = "Homeserver Identity"
    debug_mode: bool = False
    log_level: str = "INFO"

    # Domain part of every user id issued by this homeserver
    server_name: str = "localhost"

    # One of: sqlite, redis, memory
    storage_backend: str = "sqlite"

    # SQLite configuration
    sqlite_db_path: str = "./homeserver_identity.sqlite3"
    sqlite_pool_size: int = Field(default=5, ge=1)
    sqlite_pool_timeout_seconds: float = Field(default=5.0, gt=0)

    # Redis configuration
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    redis_ssl: bool = False
    redis_key_prefix: str = "hs"
    redis_pool_size: int = Field(default=10, ge=1)
    redis_pool_timeout_seconds: float = Field(default=5.0, gt=0)

    # Access tokens and one-time passwords
    access_token_key: Optional[str] = Field(
        default=None,
        description="Fernet key used to seal access tokens. MUST be set for production."
    )
    access_token_lifetime_seconds: Optional[int] = None
    otp_lifetime_seconds: int = 600

    model_config = SettingsConfigDict(
        env_file=DOTENV_PATH if DOTENV_PATH.exists() else None,
        extra="ignore",
        env_file_encoding='utf-8'
    )


settings = Settings()

logger.debug(
    f"SETTINGS.PY: storage_backend='{settings.storage_backend}', "
    f"server_name='{settings.server_name}', debug_mode={settings.debug_mode}, "
    f"access_token_key={'********' if settings.access_token_key else 'None'}"
)
