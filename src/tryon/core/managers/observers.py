"""Observer dispatch and the concrete observers for job state transitions.

- ObserverDispatcher fans each lifecycle callback out to every observer,
  logging (never propagating) observer failures.
- PollingSchedulerObserver starts the polling worker once a job is submitted.
- NotificationObserver turns transitions into JobEvents for the NotifierPort.
"""

from typing import Callable, Iterable, List, Optional

from tryon.core.interfaces.notifier import NotifierPort
from tryon.core.interfaces.observers import JobStateObserver
from tryon.core.models.events import JobEvent
from tryon.core.models.job import Job, JobStatus
from tryon.core.settings import logger


class ObserverDispatcher:
    def __init__(self, observers: Optional[Iterable[JobStateObserver]] = None) -> None:
        self._observers: List[JobStateObserver] = list(observers or [])

    def add(self, observer: JobStateObserver) -> None:
        self._observers.append(observer)

    async def job_created(self, job: Job) -> None:
        for observer in self._observers:
            try:
                await observer.on_job_created(job)
            except Exception as exc:
                logger.error(
                    f"[observer:error] on_job_created failed observer={type(observer).__name__} "
                    f"job_id={job.id} error={exc}"
                )

    async def status_changed(self, job: Job, previous_status: Optional[JobStatus]) -> None:
        for observer in self._observers:
            try:
                await observer.on_status_changed(job, previous_status)
            except Exception as exc:
                logger.error(
                    f"[observer:error] on_status_changed failed observer={type(observer).__name__} "
                    f"job_id={job.id} error={exc}"
                )
        if job.is_terminal():
            await self._job_completed(job)

    async def _job_completed(self, job: Job) -> None:
        for observer in self._observers:
            try:
                await observer.on_job_completed(job)
            except Exception as exc:
                logger.error(
                    f"[observer:error] on_job_completed failed observer={type(observer).__name__} "
                    f"job_id={job.id} error={exc}"
                )


class PollingSchedulerObserver:
    """Schedules background polling for submitted jobs.

    The poll loop itself lives in the CompletionWatcher; this observer only
    makes the "when to start polling" decision.
    """

    def __init__(self, schedule_callback: Callable[[str], None]):
        """
        Args:
            schedule_callback: Callable that schedules a poll loop for a job_id
        """
        self._schedule_callback = schedule_callback

    async def on_job_created(self, job: Job) -> None:
        """Pending jobs have nothing to poll yet."""
        pass

    async def on_status_changed(self, job: Job, previous_status: Optional[JobStatus]) -> None:
        if job.status == JobStatus.submitted and job.provider_job_id:
            logger.debug(f"[observer:polling] triggering poll schedule job_id={job.id}")
            self._schedule_callback(job.id)

    async def on_job_completed(self, job: Job) -> None:
        pass


class NotificationObserver:
    """Publishes one JobEvent per committed transition."""

    def __init__(self, notifier: NotifierPort):
        self._notifier = notifier

    async def on_job_created(self, job: Job) -> None:
        await self._notifier.publish(JobEvent.from_job(job))

    async def on_status_changed(self, job: Job, previous_status: Optional[JobStatus]) -> None:
        await self._notifier.publish(JobEvent.from_job(job, previous_status))

    async def on_job_completed(self, job: Job) -> None:
        logger.debug(f"[observer:notify] terminal event sent job_id={job.id} status={job.status}")
