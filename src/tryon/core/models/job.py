from datetime import datetime, timezone
from enum import StrEnum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from tryon.utils import is_absolute_http_url


class JobStatus(StrEnum):
    pending = "pending"
    submitted = "submitted"
    failed = "failed"
    completed = "completed"


class Category(StrEnum):
    upper_body = "upper_body"
    lower_body = "lower_body"


TERMINAL_STATUSES = frozenset({JobStatus.completed, JobStatus.failed})

# Only these edges exist; anything else (including leaving a terminal state) is rejected.
ALLOWED_TRANSITIONS = {
    JobStatus.pending: frozenset({JobStatus.submitted, JobStatus.failed}),
    JobStatus.submitted: frozenset({JobStatus.completed, JobStatus.failed}),
    JobStatus.completed: frozenset(),
    JobStatus.failed: frozenset(),
}

GLOBAL_SCOPE = "global"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobTransition(BaseModel):
    """One applied status change, kept as job history."""

    from_status: Optional[JobStatus] = None
    to_status: JobStatus
    at: datetime = Field(default_factory=utcnow)
    reason: Optional[str] = None


class Job(BaseModel):
    """Domain Job model.

    Notes:
    - `id` is the local, caller-facing UUID. `provider_job_id` is whatever the
      provider hands back and is only used for correlation (webhook lookup,
      result probing). It is assigned once and never replaced.
    - `result_ref` only ever points into the durable artifact store. When
      re-hosting fails the ephemeral provider URL goes to
      `origin_fallback_ref` instead, so clients can tell the two apart.
    - `completion_claim` / `claimed_at` mark the single completer currently
      doing persist+notify; terminal transitions from other actors are
      refused while a live claim is held.
    """

    id: str
    owner_scope: str = GLOBAL_SCOPE
    human_image_ref: str
    garment_image_ref: str
    category: Category
    garment_description: Optional[str] = None

    status: JobStatus = JobStatus.pending
    provider_job_id: Optional[str] = None
    webhook_url: Optional[str] = None

    result_ref: Optional[str] = None
    origin_fallback_ref: Optional[str] = None
    error: Optional[str] = None

    completion_claim: Optional[str] = None
    claimed_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self) -> None:
        now = utcnow()
        # keep updated_at non-decreasing even if the clock steps back
        self.updated_at = max(now, self.updated_at)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition(self, to_status: JobStatus) -> bool:
        return to_status in ALLOWED_TRANSITIONS[self.status]

    def claim_is_live(self, ttl_seconds: float, now: Optional[datetime] = None) -> bool:
        if not self.completion_claim or not self.claimed_at:
            return False
        now = now or utcnow()
        return (now - self.claimed_at).total_seconds() < ttl_seconds

    def result_url(self) -> Optional[str]:
        """URL handed to clients: durable location first, ephemeral fallback second."""
        return self.result_ref or self.origin_fallback_ref


class TryOnRequest(BaseModel):
    """Validated SubmitJob input."""

    human: str
    garment: str
    category: Category
    garment_description: Optional[str] = None
    store_name: Optional[str] = None

    model_config = {"extra": "ignore"}

    @field_validator("human", "garment")
    @classmethod
    def absolute_http_url(cls, value: str) -> str:
        value = (value or "").strip()
        if not is_absolute_http_url(value):
            raise ValueError("must be an absolute http(s) URL")
        return value

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("store_name")
    @classmethod
    def blank_store_is_global(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    def owner_scope(self) -> str:
        return self.store_name or GLOBAL_SCOPE


class JobStatusView(BaseModel):
    """Client-facing projection of a Job (GetJobStatus)."""

    jobID: str
    status: JobStatus
    resultUrl: Optional[str] = None
    fallback: bool = False
    error: Optional[str] = None
    providerJobID: Optional[str] = None
    category: Optional[Category] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusView":
        return cls(
            jobID=job.id,
            status=job.status,
            resultUrl=job.result_url() if job.status == JobStatus.completed else None,
            fallback=job.status == JobStatus.completed and job.result_ref is None
            and job.origin_fallback_ref is not None,
            error=job.error if job.status == JobStatus.failed else None,
            providerJobID=job.provider_job_id,
            category=job.category,
            created=job.created_at,
            updated=job.updated_at,
        )


class JobList(BaseModel):
    jobs: List[JobStatusView]
