"""TryOnManager: the single entry point the web adapter talks to.

Wires the submitter, watcher and quota gate together and exposes the
external operations (SubmitJob, GetJobStatus, WebhookReceiver) plus the
operator endpoints (job listing, manual webhook replay, trial allowances).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from tryon.core.config import TryOnConfig
from tryon.core.exceptions import InputValidationError, JobNotFoundError
from tryon.core.interfaces.artifact_store import ArtifactStorePort
from tryon.core.interfaces.http_client import HttpClientPort
from tryon.core.interfaces.job_repository import JobRepositoryPort
from tryon.core.interfaces.notifier import NotifierPort
from tryon.core.interfaces.quota_store import QuotaStorePort
from tryon.core.interfaces.retry import RetryPort
from tryon.core.managers.artifact_persister import ArtifactPersister
from tryon.core.managers.asset_precheck import AssetPrecheck
from tryon.core.managers.completion_watcher import CompletionWatcher
from tryon.core.managers.job_submitter import JobSubmitter
from tryon.core.managers.observers import NotificationObserver, ObserverDispatcher, PollingSchedulerObserver
from tryon.core.managers.quota_gate import QuotaGate
from tryon.core.managers.result_resolver import ResultResolver
from tryon.core.models.job import Job, JobStatus, JobStatusView
from tryon.core.models.quota import QuotaAllowance
from tryon.core.models.webhook import ManualWebhookRequest
from tryon.core.settings import logger


class TryOnManager:
    """Facade over the try-on components.

    Attributes:
        config: Immutable configuration shared by all components
        watcher: CompletionWatcher (exposed for lifecycle hooks and tests)
    """

    def __init__(
        self,
        http_client: HttpClientPort,
        job_repo: JobRepositoryPort,
        quota_store: QuotaStorePort,
        artifact_store: ArtifactStorePort,
        config: TryOnConfig,
        notifier: Optional[NotifierPort] = None,
        retry_port: Optional[RetryPort] = None,
        sleep=None,
        initial_allowances: Optional[Dict[str, int]] = None,
    ) -> None:
        self.config = config
        self._initial_allowances = dict(initial_allowances or {})
        self._repo = job_repo
        self.quota = QuotaGate(quota_store)
        self.dispatcher = ObserverDispatcher()

        resolver = ResultResolver(http_client, config)
        persister = ArtifactPersister(http_client, artifact_store, config)
        watcher_kwargs = {"sleep": sleep} if sleep is not None else {}
        self.watcher = CompletionWatcher(
            job_repo,
            resolver,
            persister,
            http_client,
            config,
            dispatcher=self.dispatcher,
            **watcher_kwargs,
        )
        self.submitter = JobSubmitter(
            http_client,
            job_repo,
            self.quota,
            AssetPrecheck(http_client, timeout=config.precheck_timeout),
            config,
            dispatcher=self.dispatcher,
            retry_port=retry_port,
        )

        self.dispatcher.add(PollingSchedulerObserver(self.watcher.schedule_poll))
        if notifier is not None:
            self.dispatcher.add(NotificationObserver(notifier))

    # ---------------- Lifecycle -----------------

    async def start(self) -> None:
        # seed only scopes that were never configured; restarts keep persisted counters
        for scope, value in self._initial_allowances.items():
            if await self.quota.current(scope) is None:
                await self.quota.set_allowance(scope, value)
        await self.watcher.reconcile()

    async def shutdown(self) -> None:
        await self.watcher.shutdown()

    # ---------------- Jobs -----------------

    async def submit_job(self, raw: Any) -> Job:
        return await self.submitter.submit(raw)

    async def _require(self, job_id: str) -> Job:
        job = await self._repo.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def get_job_status(self, job_id: str) -> JobStatusView:
        """Status view; a submitted job gets one resolver pass first."""
        job = await self._require(job_id)
        if job.status == JobStatus.submitted and job.provider_job_id:
            try:
                await self.watcher.resolve_now(job)
            except Exception as exc:
                logger.debug(f"[job:status] on-demand resolve failed job_id={job_id} error={exc}")
            job = await self._require(job_id)
        return JobStatusView.from_job(job)

    async def list_jobs(self, status: Optional[str] = None, scope: Optional[str] = None) -> List[JobStatusView]:
        if status is not None:
            try:
                status = JobStatus(status.lower())
            except ValueError as exc:
                raise InputValidationError(f"Unknown job status '{status}'") from exc
        jobs = await self._repo.list(status=status, owner_scope=scope)
        return [JobStatusView.from_job(j) for j in jobs]

    # ---------------- Webhooks -----------------

    async def handle_webhook(self, payload: Any, job_id: Optional[str] = None) -> str:
        return await self.watcher.handle_webhook(payload, job_id=job_id)

    async def handle_manual_webhook(self, request: ManualWebhookRequest) -> JobStatusView:
        """Operator replay of a provider callback for a known job."""
        await self._require(request.job_id)
        outcome = await self.watcher.handle_webhook(request.webhook_payload, job_id=request.job_id)
        logger.info(f"[webhook:manual] job_id={request.job_id} outcome={outcome}")
        return JobStatusView.from_job(await self._require(request.job_id))

    # ---------------- Trials -----------------

    async def get_allowance(self, scope: str) -> QuotaAllowance:
        return await self.quota.remaining(scope)

    async def set_allowance(self, scope: str, remaining: int) -> QuotaAllowance:
        if remaining < 0:
            raise InputValidationError("remainingTrials must be >= 0")
        return await self.quota.set_allowance(scope, remaining)
