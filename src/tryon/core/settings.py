# Logging adapter for application-wide logging
from tryon.adapters.logging_adapter import LoggingAdapter

from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings
from rich import print

from tryon.core.interfaces.logging import LoggingPort

# using pydantic_settings to manage environment variables
# and do automatic type casting in a central place
class TryOnSettings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }
    TRYON_LOG_LEVEL: str = "INFO"
    TRYON_API_HOST: str = "0.0.0.0"
    TRYON_API_PORT: int = 8000
    # Externally reachable URL of this service; webhooks are sent here
    TRYON_PUBLIC_BASE_URL: str = "http://localhost:8000"

    TRYON_PROVIDER_API_URL: str = "https://api.artificialstudio.ai/api"
    TRYON_PROVIDER_API_KEY: SecretStr | None = None
    TRYON_PROVIDER_MODEL: str = "try-clothes"
    TRYON_ASSET_HOST: str = "https://files.artificialstudio.ai"

    TRYON_POLL_INITIAL_DELAY: float = 5.0
    TRYON_POLL_INTERVAL: float = 10.0
    TRYON_POLL_BACKOFF: Literal["fixed", "exponential"] = "fixed"
    TRYON_POLL_MAX_INTERVAL: float = 60.0
    TRYON_POLL_MAX_ATTEMPTS: int = 90  # 15 minutes at the default interval
    TRYON_POLL_PROVIDER_STATUS: bool = True
    TRYON_PROBE_TIMEOUT: float = 5.0
    TRYON_PRECHECK_TIMEOUT: float = 5.0
    TRYON_FETCH_TIMEOUT: float = 30.0
    TRYON_COMPLETION_CLAIM_TTL: float = 120.0

    # "memory" or any SQLAlchemy URL, e.g. sqlite:///scratch/tryon.db
    TRYON_JOB_STORE_URL: str = "sqlite:///scratch/tryon.db"
    TRYON_JOB_DUMP_DIR: str | None = None
    # Allowance granted to scopes that have never been configured (0 = deny)
    TRYON_DEFAULT_QUOTA: int = 0
    TRYON_GLOBAL_QUOTA: int | None = 10

    TRYON_ARTIFACT_STORE: Literal["local", "s3"] = "local"
    TRYON_ARTIFACT_PREFIX: str = "tryon-results"
    TRYON_ARTIFACT_DIR: str = "scratch/artifacts"
    # Public URL under which TRYON_ARTIFACT_DIR is served (defaults to /artifacts on this service)
    TRYON_ARTIFACT_BASE_URL: str | None = None
    TRYON_S3_BUCKET: str = "tryon-results"
    TRYON_S3_ENDPOINT: str | None = None
    TRYON_S3_REGION: str = "us-east-1"
    TRYON_S3_ACCESS_KEY: SecretStr | None = None
    TRYON_S3_SECRET_KEY: SecretStr | None = None
    TRYON_S3_PUBLIC_BASE_URL: str | None = None

    TRYON_EVENT_QUEUE_SIZE: int = 100

    def print_settings(self, logger: LoggingPort):
        """Prints the settings for debugging purposes"""
        logger.info("Try-On Settings:")
        print(self)

    @field_validator("TRYON_PUBLIC_BASE_URL", "TRYON_PROVIDER_API_URL", "TRYON_ASSET_HOST", mode="before")
    def strip_trailing_slash(cls, value: str) -> str:
        """Store base URLs without trailing slash; paths are appended later."""
        if isinstance(value, str):
            return value.rstrip("/")
        return value

    @property
    def artifact_base_url(self) -> str:
        return self.TRYON_ARTIFACT_BASE_URL or f"{self.TRYON_PUBLIC_BASE_URL}/artifacts"


class NoOpLogger(LoggingPort):
    """Silent logger used until the composition root injects a real one."""

    def info(self, msg: str, *args):
        pass

    def warning(self, msg: str, *args):
        pass

    def error(self, msg: str, *args):
        pass

    def debug(self, msg: str, *args):
        pass


app_settings = TryOnSettings()

logger: LoggingPort = LoggingAdapter("tryon", app_settings.TRYON_LOG_LEVEL)


def set_logger(new_logger: LoggingPort) -> None:
    """Swap the module-level logger (composition root only)."""
    global logger
    logger = new_logger
