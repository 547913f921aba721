from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from tryon.core.models.job import Job, JobStatus, utcnow


class JobEvent(BaseModel):
    """Notification emitted after a job status transition."""

    type: str = "job.status"
    job_id: str
    status: JobStatus
    previous_status: Optional[JobStatus] = None
    provider_job_id: Optional[str] = None
    result_url: Optional[str] = None
    fallback: bool = False
    error: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_job(cls, job: Job, previous_status: Optional[JobStatus] = None) -> "JobEvent":
        return cls(
            job_id=job.id,
            status=job.status,
            previous_status=previous_status,
            provider_job_id=job.provider_job_id,
            result_url=job.result_url() if job.status == JobStatus.completed else None,
            fallback=job.status == JobStatus.completed and job.result_ref is None,
            error=job.error,
        )
