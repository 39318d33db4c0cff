"""
PostgreSQL and Tracker Configuration
Reads from saved config file first, then falls back to environment variables
"""
import os
import json
import logging
from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Path to saved configuration
CONFIG_DIR = Path(__file__).parent.parent / "data"
CONFIG_FILE = CONFIG_DIR / "config.json"


def load_saved_config() -> dict:
    """Load the database section of the saved config file, if any"""
    if CONFIG_FILE.exists():
        try:
            with open(CONFIG_FILE, 'r') as f:
                config = json.load(f)
                return config.get('database', {})
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load saved config: {e}")
    return {}


class PostgresSettings(BaseSettings):
    """PostgreSQL configuration - reads from saved config or environment variables."""

    # Direct DATABASE_URL support (for deployment)
    database_url_direct: str = ""

    # Database Configuration
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_db: str = "material_requests"

    # SSL/TLS Configuration
    postgres_sslmode: str = "disable"

    # Connection Pool Configuration
    pool_size: int = 10
    max_overflow: int = 5
    pool_pre_ping: bool = True
    pool_recycle: int = 1800
    use_null_pool: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        # Saved config overrides environment values
        saved = load_saved_config()
        if saved:
            if saved.get('host'):
                self.postgres_host = saved['host']
            if saved.get('port'):
                self.postgres_port = int(saved['port'])
            if saved.get('database'):
                self.postgres_db = saved['database']
            if saved.get('username'):
                self.postgres_user = saved['username']
            if saved.get('password'):
                self.postgres_password = saved['password']
            if saved.get('ssl_mode'):
                self.postgres_sslmode = saved['ssl_mode']

    @property
    def database_url(self) -> str:
        """Construct the database URL from DATABASE_URL or the individual settings."""

        # Check for direct DATABASE_URL (for deployment)
        direct_url = os.environ.get("DATABASE_URL", self.database_url_direct)
        if direct_url:
            if direct_url.startswith("postgres://"):
                direct_url = direct_url.replace("postgres://", "postgresql+asyncpg://", 1)
            elif direct_url.startswith("postgresql://") and "+asyncpg" not in direct_url:
                direct_url = direct_url.replace("postgresql://", "postgresql+asyncpg://", 1)
            direct_url = direct_url.replace("sslmode=require", "ssl=require")
            direct_url = direct_url.replace("sslmode=disable", "ssl=disable")
            return direct_url

        ssl_param = f"?ssl={self.postgres_sslmode}" if self.postgres_sslmode != "disable" else ""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            f"{ssl_param}"
        )


class TrackerSettings(BaseSettings):
    """Request cache, retry, export and auth settings."""

    # Query cache
    stale_time_seconds: float = 30.0
    default_page_size: int = 10

    # Retry policy for reads
    max_retries: int = 3
    detail_max_retries: int = 2
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0

    # Every store call is bounded by this timeout
    request_timeout_seconds: float = 15.0

    # Background database probe; brings the service back online after failures
    connectivity_check_interval_seconds: float = 10.0

    # Export
    export_max_rows: int = 1000
    export_default_rows: int = 100

    # Fail list reads when requester names cannot be resolved
    strict_requester_lookup: bool = False

    # Auth
    jwt_secret_key: str = "your-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"

    cors_origins: str = "*"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TRACKER_",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


postgres_settings = PostgresSettings()
tracker_settings = TrackerSettings()
