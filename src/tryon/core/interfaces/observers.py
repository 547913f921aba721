"""Observer protocols for job state transitions.

Observers decouple side effects (polling, notification) from the job
lifecycle code. They run after the repository has committed a transition.
"""

from typing import Optional, Protocol

from tryon.core.models.job import Job, JobStatus


class JobStateObserver(Protocol):
    """Observer protocol for job state transitions.

    - on_job_created: after the pending job is stored
    - on_status_changed: after any committed status change
    - on_job_completed: after the job reached a terminal state

    Observers may be called from concurrent tasks (webhook and poller) and
    must not raise into the caller.
    """

    async def on_job_created(self, job: Job) -> None:
        ...

    async def on_status_changed(
        self,
        job: Job,
        previous_status: Optional[JobStatus],
    ) -> None:
        ...

    async def on_job_completed(self, job: Job) -> None:
        ...
