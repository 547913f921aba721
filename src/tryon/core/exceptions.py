from typing import Optional
from tryon.core.models.problem import ProblemResponse


class UpstreamHttpError(Exception):
    """HTTP-level failure talking to a remote service (provider, asset host)."""
    def __init__(self, response: ProblemResponse):
        self.response = response
        super().__init__(f"{response.title}: {response.detail}")

    @property
    def status(self) -> int:
        return self.response.status


# Domain-specific try-on exceptions

class TryOnError(Exception):
    """Base exception for try-on orchestration failures.

    Attributes:
        message: Human-readable error description
        diagnostic: Technical diagnostic information for debugging
        job_id: Optional job identifier
        status: HTTP status the web adapter renders for this error
        title: Short problem title
    """
    status: int = 500
    title: str = "Try-On Error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        diagnostic: Optional[str] = None,
        job_id: Optional[str] = None
    ):
        self.message = message
        self.diagnostic = diagnostic
        self.job_id = job_id
        super().__init__(message)

    def to_problem(self, instance: Optional[str] = None) -> ProblemResponse:
        return ProblemResponse(
            title=self.title,
            status=self.status,
            detail=self.message,
            instance=instance,
        )


class InputValidationError(TryOnError):
    """Malformed SubmitJob input (URLs, category, missing fields)."""
    status = 400
    title = "Invalid Try-On Request"


class QuotaExceededError(TryOnError):
    """No allowance left in the owner scope; no job was created."""
    status = 429
    title = "No Trials Remaining"

    def __init__(self, scope: str, diagnostic: Optional[str] = None):
        self.scope = scope
        super().__init__(message=f"No trials remaining for scope '{scope}'", diagnostic=diagnostic)


class QuotaStoreError(TryOnError):
    """The quota backing store failed; state of the counter is unchanged."""
    status = 503
    title = "Quota Store Unavailable"
    retryable = True


class AssetUnreachableError(TryOnError):
    """A source image failed its existence check before any quota was spent.

    Attributes:
        asset: Which input failed ("human" or "garment")
        url: The checked URL
        upstream_status: HTTP status returned by the asset host, if any
    """
    status = 422
    title = "Image Not Accessible"

    def __init__(
        self,
        asset: str,
        url: str,
        upstream_status: Optional[int] = None,
        diagnostic: Optional[str] = None,
    ):
        self.asset = asset
        self.url = url
        self.upstream_status = upstream_status
        shown = upstream_status if upstream_status is not None else "unreachable"
        message = f"{asset.capitalize()} image not accessible ({shown})"
        super().__init__(message=message, diagnostic=diagnostic)


class ProviderError(TryOnError):
    """Raised when the provider rejects the submission or answers malformed.

    Attributes:
        upstream_status: HTTP status code from provider (if applicable)
        upstream_body: Response body from provider (if available)
    """
    status = 502
    title = "Provider Submission Failed"

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
        diagnostic: Optional[str] = None,
        job_id: Optional[str] = None
    ):
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body
        super().__init__(message=message, diagnostic=diagnostic, job_id=job_id)


class ResolutionTimeoutError(TryOnError):
    """Polling budget exhausted without a ready result.

    Attributes:
        attempts: Number of polling ticks performed
    """
    status = 504
    title = "Result Resolution Timed Out"

    def __init__(self, job_id: str, attempts: int, diagnostic: Optional[str] = None):
        self.attempts = attempts
        message = f"No result for job {job_id} after {attempts} polling attempts"
        super().__init__(message=message, diagnostic=diagnostic, job_id=job_id)


class PersistenceDegraded(TryOnError):
    """Re-hosting the result failed; the job completes with the origin URL."""
    status = 200
    title = "Persistence Degraded"

    def __init__(self, source_url: str, diagnostic: Optional[str] = None, job_id: Optional[str] = None):
        self.source_url = source_url
        super().__init__(
            message=f"Could not re-host result {source_url}",
            diagnostic=diagnostic,
            job_id=job_id,
        )


class JobNotFoundError(TryOnError):
    status = 404
    title = "Job Not Found"

    def __init__(self, job_id: str):
        super().__init__(message=f"Job '{job_id}' not found", job_id=job_id)
