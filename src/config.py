"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Scalesync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # IANA zone used to turn a Fitbit date + time-of-day into an instant
    timezone: str = "UTC"

    # --- Postgres ---
    database_url: str  # asyncpg connection string

    # --- Fitbit ---
    fitbit_client_id: str
    fitbit_client_secret: str
    fitbit_verification: str  # subscriber verification code from dev.fitbit.com
    fitbit_locale: str = "en_AU"

    # --- Token secret (S3 bucket with object versioning) ---
    token_secret_name: str = "fitbit/token.json"
    secret_bucket_name: str
    secret_endpoint_url: str = ""  # empty = AWS S3
    secret_region: str = "us-east-1"
    secret_access_key_id: str = ""
    secret_secret_access_key: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
