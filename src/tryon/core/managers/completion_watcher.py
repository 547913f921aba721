"""CompletionWatcher: drives submitted jobs to a terminal state.

Two actors race to finish a job: the provider's webhook (push) and the
polling worker (pull). Both end in `complete` or `fail`:

1. `complete` takes the job's completion claim (atomic in the repository),
   re-hosts the result, then commits `completed` guarded by its claim token.
   Whoever loses the claim does nothing.
2. `fail` is refused by the repository while another actor holds a live
   claim, and always once the job is terminal. A late webhook can therefore
   never revive a timed-out job, and a timeout cannot clobber a completion
   that is in flight.

Observers are notified only by the actor whose transition was committed, so
each terminal transition produces exactly one notification.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from tryon.core.config import TryOnConfig
from tryon.core.exceptions import ResolutionTimeoutError, UpstreamHttpError
from tryon.core.interfaces.http_client import HttpClientPort
from tryon.core.interfaces.job_repository import JobRepositoryPort
from tryon.core.logging_config import correlation_id_var
from tryon.core.managers.artifact_persister import ArtifactPersister
from tryon.core.managers.observers import ObserverDispatcher
from tryon.core.managers.result_resolver import ResultResolver
from tryon.core.models.job import Job, JobStatus
from tryon.core.models.resolution import ResolutionState
from tryon.core.models.webhook import WebhookPayload
from tryon.core.settings import logger
from tryon.utils import shorten


class WebhookOutcome:
    """What a webhook delivery led to (returned for logging and tests)."""

    COMPLETED = "completed"
    FAILED = "failed"
    IGNORED = "ignored"
    WAITING = "waiting"
    ERROR = "error"


class CompletionWatcher:
    def __init__(
        self,
        job_repo: JobRepositoryPort,
        resolver: ResultResolver,
        persister: ArtifactPersister,
        http_client: HttpClientPort,
        config: TryOnConfig,
        dispatcher: Optional[ObserverDispatcher] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._repo = job_repo
        self._resolver = resolver
        self._persister = persister
        self._http = http_client
        self.config = config
        self._dispatcher = dispatcher or ObserverDispatcher()
        self._sleep = sleep
        self._poll_tasks: Dict[str, asyncio.Task] = {}
        self._shutdown = False

    # ---------------- Completion path -----------------

    async def complete(self, job_id: str, source_url: str, reason: str) -> Optional[Job]:
        """Claim, persist, commit. Returns the completed job, or None if another actor owns it."""
        ttl = self.config.completion_claim_ttl
        token = uuid.uuid4().hex
        claimed = await self._repo.claim(job_id, token, ttl)
        if claimed is None:
            logger.debug(f"[job:complete] claim not acquired job_id={job_id} via={reason}")
            return None

        try:
            outcome = await self._persister.persist(source_url, claimed)
            refs = (
                {"origin_fallback_ref": outcome.durable_url}
                if outcome.used_fallback
                else {"result_ref": outcome.durable_url}
            )
            done = await self._repo.transition(
                job_id,
                JobStatus.completed,
                token=token,
                claim_ttl=ttl,
                reason=reason,
                **refs,
            )
        except Exception:
            await self._repo.release_claim(job_id, token)
            raise

        if done is None:
            await self._repo.release_claim(job_id, token)
            logger.warning(f"[job:complete] terminal transition refused job_id={job_id} via={reason}")
            return None

        logger.info(
            f"[job:complete] completed job_id={job_id} via={reason} "
            f"fallback={outcome.used_fallback} result={shorten(done.result_url())}"
        )
        await self._dispatcher.status_changed(done, claimed.status)
        return done

    async def fail(self, job: Job, message: str, reason: str) -> Optional[Job]:
        failed = await self._repo.transition(
            job.id,
            JobStatus.failed,
            error=message,
            reason=reason,
            claim_ttl=self.config.completion_claim_ttl,
        )
        if failed is None:
            logger.debug(f"[job:fail] transition refused job_id={job.id} reason={reason}")
            return None
        logger.warning(f"[job:fail] failed job_id={job.id} reason={reason} error={message}")
        await self._dispatcher.status_changed(failed, job.status)
        return failed

    async def _complete_from_resolver(self, job: Job, reason: str) -> Optional[Job]:
        resolution = await self._resolver.resolve(job.provider_job_id or "")
        if resolution.is_ready:
            return await self.complete(job.id, resolution.url, reason)
        if resolution.state == ResolutionState.error:
            return await self.fail(job, resolution.detail or "Unresolvable provider job id", "resolver error")
        return None

    async def resolve_now(self, job: Job) -> Optional[Job]:
        """Single resolver pass outside the poll loop (status requests)."""
        if job.status != JobStatus.submitted or not job.provider_job_id:
            return None
        return await self._complete_from_resolver(job, "status request")

    # ---------------- Webhook -----------------

    async def _locate(self, payload: WebhookPayload, job_id: Optional[str]) -> Optional[Job]:
        if job_id:
            job = await self._repo.get(job_id)
            if job is not None:
                return job
        if payload.id:
            return await self._repo.get_by_provider_job_id(payload.id)
        return None

    async def handle_webhook(self, raw: Any, job_id: Optional[str] = None) -> str:
        """Process one provider callback. Never raises."""
        try:
            return await self._handle_webhook(raw, job_id)
        except Exception as exc:
            logger.error(f"[webhook] processing error job_id={job_id} error={exc}")
            return WebhookOutcome.ERROR

    async def _handle_webhook(self, raw: Any, job_id: Optional[str]) -> str:
        payload = raw if isinstance(raw, WebhookPayload) else WebhookPayload.from_raw(raw)
        job = await self._locate(payload, job_id)
        if job is None:
            logger.info(f"[webhook] unknown job job_id={job_id} provider_id={payload.id}; acknowledged")
            return WebhookOutcome.IGNORED

        if payload.id and job.provider_job_id and payload.id != job.provider_job_id:
            logger.warning(
                f"[webhook] provider id mismatch job_id={job.id} "
                f"expected={job.provider_job_id} got={payload.id}; ignored"
            )
            return WebhookOutcome.IGNORED

        if job.is_terminal():
            logger.debug(f"[webhook] job already {job.status} job_id={job.id}; acknowledged")
            return WebhookOutcome.IGNORED

        if job.status != JobStatus.submitted:
            logger.info(
                f"[webhook] job not submitted yet, dropping status={payload.normalized_status() or '-'} "
                f"job_id={job.id}; polling resolves it once submitted"
            )
            return WebhookOutcome.IGNORED

        if payload.is_success():
            output = payload.output_url()
            if output:
                done = await self.complete(job.id, output, "webhook")
            else:
                done = await self._complete_from_resolver(job, "webhook+resolver")
            if done is not None and done.status == JobStatus.completed:
                return WebhookOutcome.COMPLETED
            if done is not None:
                return WebhookOutcome.FAILED
            # leave it to the poller; make sure one is running
            self.schedule_poll(job.id)
            return WebhookOutcome.WAITING

        if payload.is_failure():
            failed = await self.fail(job, payload.error_message(), "webhook reported failure")
            return WebhookOutcome.FAILED if failed else WebhookOutcome.IGNORED

        logger.debug(f"[webhook] progress status={payload.normalized_status() or '-'} job_id={job.id}")
        return WebhookOutcome.WAITING

    # ---------------- Polling -----------------

    def schedule_poll(self, job_id: str) -> None:
        if self._shutdown:
            return
        existing = self._poll_tasks.get(job_id)
        if existing is not None and not existing.done():
            return
        logger.debug(f"[job:poll] scheduling poll loop job_id={job_id}")
        task = asyncio.create_task(self._poll_loop(job_id))
        self._poll_tasks[job_id] = task
        task.add_done_callback(lambda t: self._forget(job_id, t))

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._poll_tasks.get(job_id) is task:
            del self._poll_tasks[job_id]

    @property
    def active_polls(self) -> int:
        return sum(1 for t in self._poll_tasks.values() if not t.done())

    async def wait_idle(self) -> None:
        """Wait until every polling task has finished (tests, graceful stop)."""
        while True:
            pending = [t for t in self._poll_tasks.values() if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def _poll_loop(self, job_id: str) -> None:
        """Poll until terminal, shutdown, or the attempt budget runs out."""
        cid = correlation_id_var.set(job_id)
        try:
            await self._sleep(self.config.poll_initial_delay)
            attempt = 0
            while not self._shutdown:
                job = await self._repo.get(job_id)
                if job is None or job.is_terminal():
                    logger.debug(f"[job:poll] stopping job_id={job_id} status={job.status if job else None}")
                    return

                attempt += 1
                if await self.poll_once(job):
                    return

                if attempt >= self.config.poll_max_attempts:
                    timeout = ResolutionTimeoutError(job_id, attempt)
                    logger.warning(f"[job:poll] budget exhausted job_id={job_id} attempts={attempt}")
                    await self.fail(job, timeout.message, "polling budget exhausted")
                    return

                await self._sleep(self.config.poll_delay(attempt))
        except asyncio.CancelledError:
            logger.debug(f"[job:poll] cancelled job_id={job_id}")
            raise
        except Exception as exc:
            logger.error(f"[job:poll] loop error job_id={job_id} error={exc}")
        finally:
            correlation_id_var.reset(cid)

    async def poll_once(self, job: Job) -> bool:
        """One polling tick. Returns True when the job reached a terminal state."""
        if self.config.poll_provider_status:
            try:
                done = await self._check_provider_status(job)
            except Exception as exc:
                # counts as a not-ready tick; the attempt budget still applies
                logger.warning(f"[job:poll] provider status check failed job_id={job.id} error={exc}")
                done = None
            if done is not None:
                return done.is_terminal()

        try:
            done = await self._complete_from_resolver(job, "poll")
        except Exception as exc:
            logger.debug(f"[job:poll] resolve error job_id={job.id} err={exc}")
            return False
        return done is not None and done.is_terminal()

    async def _check_provider_status(self, job: Job) -> Optional[Job]:
        url = f"{self.config.provider_api_url.rstrip('/')}/generations/{job.provider_job_id}"
        headers = {"Authorization": self.config.provider_api_key} if self.config.provider_api_key else None
        try:
            body = await self._http.get(url, timeout=self.config.probe_timeout, headers=headers)
        except UpstreamHttpError as exc:
            logger.debug(f"[job:poll] provider status unavailable job_id={job.id} status={exc.status}")
            return None

        payload = WebhookPayload.from_raw(body)
        if payload.is_success() and payload.output_url():
            return await self.complete(job.id, payload.output_url(), "provider status")
        if payload.is_failure():
            return await self.fail(job, payload.error_message(), "provider reported failure")
        return None

    # ---------------- Lifecycle -----------------

    async def reconcile(self) -> int:
        """Resume work left behind by a previous process.

        Submitted jobs get a fresh poller. Pending jobs were interrupted between
        creation and the provider answer; their provider id is unknown, so they
        can never be correlated and are failed.
        """
        resumed = 0
        for job in await self._repo.list(status=JobStatus.submitted):
            self.schedule_poll(job.id)
            resumed += 1
        for job in await self._repo.list(status=JobStatus.pending):
            await self.fail(job, "Submission interrupted by restart", "startup reconciliation")
        if resumed:
            logger.info(f"[job:reconcile] resumed polling for {resumed} submitted job(s)")
        return resumed

    async def shutdown(self) -> None:
        self._shutdown = True
        tasks = list(self._poll_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_tasks.clear()
