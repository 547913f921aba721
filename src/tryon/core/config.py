"""Configuration models for core domain components.

This module provides Pydantic-based configuration classes that consolidate
settings for the try-on managers, enabling dependency injection and testability.
"""

from typing import Literal, Optional, Tuple
from pydantic import BaseModel, Field

# Provider's historical naming quirks: the literal "undefined" is a real variant.
RESULT_EXTENSIONS: Tuple[str, ...] = ("jpg", "png", "jpeg", "webp", "undefined")


class TryOnConfig(BaseModel):
    """Configuration for submission, polling and result resolution.

    Attributes:
        provider_api_url: Base URL of the provider API (``/generate`` and ``/generations/{id}`` live below it)
        asset_host: Host serving result files as ``<asset_host>/<provider_job_id>.<ext>``
        public_base_url: Externally reachable base URL used to build webhook callbacks
        poll_initial_delay: Seconds before the first polling tick
        poll_interval: Seconds between polling ticks (base for exponential backoff)
        poll_max_attempts: Hard polling budget; exhausting it fails the job
        probe_timeout: Per-candidate HEAD timeout for result probing
    """

    provider_api_url: str = "https://api.artificialstudio.ai/api"
    provider_model: str = "try-clothes"
    provider_api_key: Optional[str] = None
    asset_host: str = "https://files.artificialstudio.ai"
    public_base_url: str = "http://localhost:8000"

    result_extensions: Tuple[str, ...] = RESULT_EXTENSIONS

    poll_initial_delay: float = Field(
        default=5.0,
        ge=0,
        description="Delay in seconds before the first polling tick"
    )

    poll_interval: float = Field(
        default=10.0,
        gt=0,
        description="Interval in seconds between polling ticks"
    )

    poll_backoff: Literal["fixed", "exponential"] = Field(
        default="fixed",
        description="Fixed interval or exponential growth of the interval per attempt"
    )

    poll_max_interval: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for the exponential polling interval"
    )

    poll_max_attempts: int = Field(
        default=90,
        ge=1,
        description="Polling attempts before the job is failed with a timeout"
    )

    poll_provider_status: bool = Field(
        default=True,
        description="Ask the provider's generation endpoint for status on each tick before probing assets"
    )

    probe_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Timeout in seconds for each HEAD probe of a candidate result URL"
    )

    precheck_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Timeout in seconds for source image existence checks"
    )

    fetch_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds when downloading a result for re-hosting"
    )

    submit_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for the provider submission request"
    )

    submit_max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts for transient errors when submitting to the provider"
    )

    submit_retry_base_wait: float = Field(
        default=1.0,
        gt=0,
        description="Base wait time in seconds for exponential backoff between retries"
    )

    submit_retry_max_wait: float = Field(
        default=5.0,
        gt=0,
        description="Maximum wait time in seconds between retry attempts"
    )

    completion_claim_ttl: float = Field(
        default=120.0,
        gt=0,
        description="Seconds a completer's claim blocks other terminal transitions"
    )

    artifact_prefix: str = "tryon-results"

    model_config = {
        "frozen": True,  # Immutable after creation for safety
        "extra": "forbid",  # Reject unknown fields
    }

    def poll_delay(self, attempt: int) -> float:
        """Delay before polling tick number ``attempt`` (1-based, after the first)."""
        if self.poll_backoff == "fixed":
            return self.poll_interval
        return min(self.poll_interval * (2 ** max(attempt - 1, 0)), self.poll_max_interval)

    def webhook_url(self, job_id: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/webhook?job_id={job_id}"

    @classmethod
    def from_app_settings(cls, settings) -> "TryOnConfig":
        """Factory method to construct config from TryOnSettings instance.

        Args:
            settings: TryOnSettings instance from core.settings

        Returns:
            TryOnConfig with values from app settings
        """
        api_key = settings.TRYON_PROVIDER_API_KEY
        return cls(
            provider_api_url=settings.TRYON_PROVIDER_API_URL,
            provider_model=settings.TRYON_PROVIDER_MODEL,
            provider_api_key=api_key.get_secret_value() if api_key else None,
            asset_host=settings.TRYON_ASSET_HOST,
            public_base_url=settings.TRYON_PUBLIC_BASE_URL,
            poll_initial_delay=settings.TRYON_POLL_INITIAL_DELAY,
            poll_interval=settings.TRYON_POLL_INTERVAL,
            poll_backoff=settings.TRYON_POLL_BACKOFF,
            poll_max_interval=settings.TRYON_POLL_MAX_INTERVAL,
            poll_max_attempts=settings.TRYON_POLL_MAX_ATTEMPTS,
            poll_provider_status=settings.TRYON_POLL_PROVIDER_STATUS,
            probe_timeout=settings.TRYON_PROBE_TIMEOUT,
            precheck_timeout=settings.TRYON_PRECHECK_TIMEOUT,
            fetch_timeout=settings.TRYON_FETCH_TIMEOUT,
            completion_claim_ttl=settings.TRYON_COMPLETION_CLAIM_TTL,
            artifact_prefix=settings.TRYON_ARTIFACT_PREFIX,
            # submit_timeout and the submit retry policy use defaults (no settings exist yet)
        )
