"""In-memory implementation of JobRepositoryPort.

Async-safe using an asyncio.Lock: every compare-and-set runs entirely under
the lock, so concurrent webhook and polling tasks in one process see a single
winner. Suitable for tests and single-process development. State is lost on
restart; use the SQL adapter when jobs must survive one.
"""
from __future__ import annotations

import asyncio
import json
import os
from copy import deepcopy
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from tryon.core.interfaces.job_repository import JobRepositoryPort
from tryon.core.models.job import Job, JobStatus, JobTransition, TERMINAL_STATUSES, utcnow
from tryon.core.settings import logger


class InMemoryJobRepository(JobRepositoryPort):
    def __init__(self, dump_dir: str | None = None) -> None:
        self._jobs: Dict[str, Job] = {}
        self._history: Dict[str, List[JobTransition]] = {}
        self._lock = asyncio.Lock()
        self._dump_dir = dump_dir
        if self._dump_dir:
            os.makedirs(self._dump_dir, exist_ok=True)

    def _dump(self, job: Job) -> None:
        """Write a JSON snapshot of the job and its history (debugging aid)."""
        if not self._dump_dir:
            return
        try:
            payload = {
                "meta": {
                    "dumped_at": utcnow().isoformat(),
                    "repository": "in-memory",
                    "version": 1,
                },
                "job": job.model_dump(mode="json"),
                "history": [t.model_dump(mode="json") for t in self._history.get(job.id, [])],
            }
            path = os.path.join(self._dump_dir, f"{job.id}.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
        except OSError as exc:
            logger.warning("[job:dump] could not write snapshot job_id=%s error=%s", job.id, exc)

    def _record(self, job: Job, previous: Optional[JobStatus], reason: Optional[str]) -> None:
        self._history.setdefault(job.id, []).append(
            JobTransition(from_status=previous, to_status=job.status, at=job.updated_at, reason=reason)
        )

    async def create(self, job: Job) -> Job:
        async with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job already exists: {job.id}")
            stored = deepcopy(job)
            self._jobs[job.id] = stored
            self._history[job.id] = []
            self._record(stored, None, "created")
            self._dump(stored)
            return deepcopy(stored)

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            j = self._jobs.get(job_id)
            return deepcopy(j) if j else None

    async def get_by_provider_job_id(self, provider_job_id: str) -> Optional[Job]:
        async with self._lock:
            for j in self._jobs.values():
                if j.provider_job_id == provider_job_id:
                    return deepcopy(j)
            return None

    async def list(
        self,
        status: Optional[JobStatus] = None,
        owner_scope: Optional[str] = None,
    ) -> Sequence[Job]:
        async with self._lock:
            jobs = list(self._jobs.values())
            if status is not None:
                jobs = [j for j in jobs if j.status == status]
            if owner_scope is not None:
                jobs = [j for j in jobs if j.owner_scope == owner_scope]
            jobs.sort(key=lambda j: j.created_at)
            return [deepcopy(j) for j in jobs]

    async def mark_submitted(self, job_id: str, provider_job_id: str, webhook_url: Optional[str] = None) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job or job.status != JobStatus.pending or job.provider_job_id is not None:
                return None
            job.provider_job_id = provider_job_id
            if webhook_url:
                job.webhook_url = webhook_url
            job.status = JobStatus.submitted
            job.touch()
            self._record(job, JobStatus.pending, "provider accepted")
            self._dump(job)
            return deepcopy(job)

    async def claim(self, job_id: str, token: str, ttl_seconds: float) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job or job.status != JobStatus.submitted:
                return None
            now = utcnow()
            if job.claim_is_live(ttl_seconds, now) and job.completion_claim != token:
                return None
            job.completion_claim = token
            job.claimed_at = now
            return deepcopy(job)

    async def release_claim(self, job_id: str, token: str) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job and job.completion_claim == token:
                job.completion_claim = None
                job.claimed_at = None

    async def transition(
        self,
        job_id: str,
        to_status: JobStatus,
        *,
        token: Optional[str] = None,
        result_ref: Optional[str] = None,
        origin_fallback_ref: Optional[str] = None,
        error: Optional[str] = None,
        reason: Optional[str] = None,
        claim_ttl: float = 0,
    ) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if not job or not job.can_transition(to_status):
                return None
            if job.claim_is_live(claim_ttl) and job.completion_claim != token:
                return None
            previous = job.status
            job.status = to_status
            if result_ref is not None:
                job.result_ref = result_ref
            if origin_fallback_ref is not None:
                job.origin_fallback_ref = origin_fallback_ref
            if error is not None:
                job.error = error
            if to_status in TERMINAL_STATUSES:
                job.completion_claim = None
                job.claimed_at = None
            job.touch()
            self._record(job, previous, reason)
            self._dump(job)
            return deepcopy(job)

    async def history(self, job_id: str) -> List[JobTransition]:
        async with self._lock:
            return [deepcopy(t) for t in self._history.get(job_id, [])]

    # Test helper: age a claim as if its holder crashed long ago
    async def expire_claim(self, job_id: str, age_seconds: float) -> None:  # pragma: no cover simple access
        async with self._lock:
            job = self._jobs.get(job_id)
            if job and job.claimed_at:
                job.claimed_at = job.claimed_at - timedelta(seconds=age_seconds)
