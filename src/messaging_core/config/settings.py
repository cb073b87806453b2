from pydantic_settings import BaseSettings
from pydantic import ConfigDict, field_validator
from pathlib import Path
from typing import Literal
from functools import lru_cache
from ..validators.config_validators import to_uppercase, to_lowercase, require_positive


class Settings(BaseSettings):
    """
    Application settings loaded from environment.

    Every field has a default so the package can be imported (and tested) without
    an environment; production deployments set at least the POSTGRES_* values or
    DATABASE_URL_OVERRIDE.
    """

    # Environment
    ENV: Literal["development", "testing", "staging", "production"] = "development"

    # Database configuration
    DATABASE_URL_OVERRIDE: str | None = None
    POSTGRES_DRIVER: str = "asyncpg"
    POSTGRES_USERNAME: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "messaging"

    # Test database configuration
    TEST_POSTGRES_DB: str | None = None
    TESTING: bool = False

    # SQLAlchemy
    SQLALCHEMY_ECHO: bool = False
    AUTO_CREATE_SCHEMA: bool = False

    # Messaging
    MESSAGE_PAGE_SIZE: int = 50
    MESSAGE_PAGE_SIZE_MAX: int = 200
    MESSAGE_PREVIEW_LENGTH: int = 120
    MAX_MESSAGE_LENGTH: int = 4000
    CONVERSATION_STARTED_TEXT: str = "Conversation started"

    # Realtime
    REDIS_URL: str | None = None
    EVENT_QUEUE_SIZE: int = 1000

    # Profiles
    PROFILE_DIRECTORY_FILE: Path | None = None

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "json"
    LOG_TO_STDOUT: bool = True
    LOG_DIR: Path = Path("/var/log/messaging-core")
    LOG_MAX_BYTES: int = 10_000_000  # 10 MB
    LOG_BACKUP_COUNT: int = 5
    ENABLE_SQL_LOGGING: bool = False

    # --- Derived settings ---
    @property
    def DATABASE_URL(self) -> str:
        """
        Return the database URL for the current environment.

        Resolution order:
        - `DATABASE_URL_OVERRIDE` when set (any SQLAlchemy async URL, e.g. `sqlite+aiosqlite://`).
        - The test database (`TEST_POSTGRES_DB`) when `TESTING=True`, so test runs never
          touch the production database.
        - The regular database (`POSTGRES_DB`).

        Returns:
            str: The constructed database connection URL.
        """
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE

        database = self.POSTGRES_DB
        if self.TESTING and self.TEST_POSTGRES_DB:
            database = self.TEST_POSTGRES_DB

        return (
            f"postgresql+{self.POSTGRES_DRIVER}://"
            f"{self.POSTGRES_USERNAME}:{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
            f"{database}"
        )

    # --- Validators ---
    @field_validator("LOG_LEVEL", mode="before")
    def normalize_log_level(cls, v: str | None) -> str | None:
        """
        Normalize the LOG_LEVEL environment variable value to uppercase.

        Runs before type validation so that `LOG_LEVEL=debug` is accepted and the
        logging system receives the canonical level name.
        """
        return to_uppercase(v)

    @field_validator("LOG_FORMAT", mode="before")
    def normalize_log_format(cls, v: str | None) -> str | None:
        """
        Normalize the LOG_FORMAT environment variable value to lowercase.
        """
        return to_lowercase(v)

    @field_validator(
        "MESSAGE_PAGE_SIZE",
        "MESSAGE_PAGE_SIZE_MAX",
        "MESSAGE_PREVIEW_LENGTH",
        "MAX_MESSAGE_LENGTH",
        "EVENT_QUEUE_SIZE",
    )
    def check_positive(cls, v: int) -> int:
        return require_positive(v)

    # --- ConfigDict settings ---
    model_config = ConfigDict(
        # Load environment variables from the .env file located next to the package root.
        env_file=str(Path(__file__).parent.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


# get_settings() takes no arguments and always returns the same settings from the environment,
# so it is cached.
@lru_cache()
def get_settings() -> Settings:
    return Settings()
