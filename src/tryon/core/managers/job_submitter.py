"""JobSubmitter: validated request -> precheck -> quota -> pending job -> provider.

The ordering is fixed: nothing is spent before the source images pass their
existence check, and no job exists unless a quota unit was reserved. Once the
pending job is stored, every failure path ends in a `failed` job.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from pydantic import ValidationError

from tryon.core.config import TryOnConfig
from tryon.core.exceptions import InputValidationError, ProviderError, UpstreamHttpError
from tryon.core.interfaces.http_client import HttpClientPort
from tryon.core.interfaces.job_repository import JobRepositoryPort
from tryon.core.interfaces.retry import RetryPort
from tryon.core.managers.asset_precheck import AssetPrecheck
from tryon.core.managers.observers import ObserverDispatcher
from tryon.core.managers.quota_gate import QuotaGate
from tryon.core.models.job import Job, JobStatus, TryOnRequest
from tryon.core.settings import logger

TRANSIENT_STATUSES = frozenset({502, 503, 504})


class TransientProviderError(ProviderError):
    """Provider answer worth retrying (gateway errors, timeouts, connection loss)."""


def parse_request(raw: Any) -> TryOnRequest:
    """Validate raw SubmitJob input into a TryOnRequest."""
    if isinstance(raw, TryOnRequest):
        return raw
    if not isinstance(raw, dict):
        raise InputValidationError("Request body must be a JSON object")
    try:
        return TryOnRequest.model_validate(raw)
    except ValidationError as exc:
        fields = ", ".join(
            ".".join(str(p) for p in err["loc"]) + f" ({err['msg']})" for err in exc.errors()
        )
        raise InputValidationError(f"Invalid try-on request: {fields}", diagnostic=str(exc)) from exc


def extract_provider_job_id(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    value = body.get("id") or body.get("_id")
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class JobSubmitter:
    def __init__(
        self,
        http_client: HttpClientPort,
        job_repo: JobRepositoryPort,
        quota_gate: QuotaGate,
        precheck: AssetPrecheck,
        config: TryOnConfig,
        dispatcher: Optional[ObserverDispatcher] = None,
        retry_port: Optional[RetryPort] = None,
    ) -> None:
        self._http = http_client
        self._repo = job_repo
        self._quota = quota_gate
        self._precheck = precheck
        self.config = config
        self._dispatcher = dispatcher or ObserverDispatcher()
        self._retry = retry_port

    async def submit(self, raw: Any) -> Job:
        request = parse_request(raw)
        scope = request.owner_scope()

        await self._precheck.check(request.human, request.garment)
        await self._quota.try_reserve(scope)

        job = Job(
            id=str(uuid.uuid4()),
            owner_scope=scope,
            human_image_ref=request.human,
            garment_image_ref=request.garment,
            category=request.category,
            garment_description=request.garment_description,
        )
        job.webhook_url = self.config.webhook_url(job.id)
        await self._repo.create(job)
        await self._dispatcher.job_created(job)
        logger.info(f"[job:submit] pending job_id={job.id} scope={scope} category={job.category}")

        try:
            body = await self._send(job)
        except ProviderError as exc:
            await self._fail(job, exc.message)
            exc.job_id = job.id
            raise
        except Exception as exc:
            message = f"Provider submission failed: {exc}"
            await self._fail(job, message)
            raise ProviderError(message, diagnostic=type(exc).__name__, job_id=job.id) from exc

        provider_job_id = extract_provider_job_id(body)
        if not provider_job_id:
            message = "Provider response did not include a job id"
            await self._fail(job, message)
            raise ProviderError(message, upstream_body=str(body)[:500], job_id=job.id)

        submitted = await self._repo.mark_submitted(job.id, provider_job_id, job.webhook_url)
        if submitted is None:
            # another actor already moved the job out of pending, e.g. reconciliation in a second process
            current = await self._repo.get(job.id)
            logger.error(f"[job:submit] mark_submitted refused job_id={job.id} current={current.status if current else None}")
            return current or job

        logger.info(f"[job:submit] submitted job_id={job.id} provider_job_id={provider_job_id}")
        await self._dispatcher.status_changed(submitted, JobStatus.pending)
        return submitted

    def _payload(self, job: Job) -> Dict[str, Any]:
        return {
            "model": self.config.provider_model,
            "input": {
                "human": job.human_image_ref,
                "garment": job.garment_image_ref,
                "category": job.category.value,
                "garment_description": job.garment_description or "",
            },
            "webhook": job.webhook_url,
        }

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.provider_api_key:
            headers["Authorization"] = self.config.provider_api_key
        return headers

    async def _post_once(self, job: Job) -> Any:
        url = f"{self.config.provider_api_url.rstrip('/')}/generate"
        logger.debug(f"[job:forward] POST url={url} job_id={job.id}")
        try:
            resp = await self._http.post(
                url,
                json=self._payload(job),
                timeout=self.config.submit_timeout,
                headers=self._headers(),
            )
        except UpstreamHttpError as exc:
            if exc.status in TRANSIENT_STATUSES:
                raise TransientProviderError(exc.response.detail, upstream_status=exc.status) from exc
            raise ProviderError(exc.response.detail, upstream_status=exc.status) from exc

        status = resp.get("status", 0)
        body = resp.get("body")
        if 200 <= status < 300:
            return body
        message = f"Provider rejected submission with HTTP {status}"
        if status in TRANSIENT_STATUSES or status >= 500:
            logger.debug(f"[job:forward] transient error, will retry: status={status} job_id={job.id}")
            raise TransientProviderError(message, upstream_status=status, upstream_body=str(body)[:500])
        raise ProviderError(message, upstream_status=status, upstream_body=str(body)[:500])

    async def _send(self, job: Job) -> Any:
        if self._retry is None:
            return await self._post_once(job)
        return await self._retry.execute(
            self._post_once,
            job,
            attempts=self.config.submit_max_retries,
            wait_initial=self.config.submit_retry_base_wait,
            wait_max=self.config.submit_retry_max_wait,
            exception_types=(TransientProviderError,),
        )

    async def _fail(self, job: Job, message: str) -> None:
        logger.warning(f"[job:submit] provider failure job_id={job.id} error={message}")
        failed = await self._repo.transition(
            job.id, JobStatus.failed, error=message, reason="provider submission failed"
        )
        if failed is not None:
            await self._dispatcher.status_changed(failed, JobStatus.pending)
