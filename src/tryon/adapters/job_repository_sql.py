"""SQL implementation of JobRepositoryPort (SQLAlchemy Core).

Jobs survive restarts. Each compare-and-set is a single conditional UPDATE
whose WHERE clause restates the precondition, so two processes sharing the
database still get exactly one winner. Blocking calls run in worker
threads via asyncio.to_thread.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import List, Optional, Sequence

from sqlalchemy import Engine, and_, insert, or_, select, update
from sqlalchemy.exc import IntegrityError

from tryon.adapters.sql_schema import as_utc, job_history_table, jobs_table
from tryon.core.interfaces.job_repository import JobRepositoryPort
from tryon.core.models.job import Job, JobStatus, JobTransition, TERMINAL_STATUSES, utcnow


def _row_to_job(row) -> Job:
    data = dict(row._mapping)
    for key in ("claimed_at", "created_at", "updated_at"):
        data[key] = as_utc(data[key])
    return Job.model_validate(data)


class SqlJobRepository(JobRepositoryPort):
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    # -- sync helpers (run in threads) -------------------------------------

    def _insert_history(self, conn, job_id: str, previous: Optional[JobStatus], to_status: JobStatus, at, reason: Optional[str]) -> None:
        conn.execute(
            insert(job_history_table).values(
                job_id=job_id,
                from_status=previous.value if previous else None,
                to_status=to_status.value,
                at=at,
                reason=reason,
            )
        )

    def _create_sync(self, job: Job) -> Job:
        values = job.model_dump()
        values["status"] = job.status.value
        values["category"] = job.category.value
        try:
            with self._engine.begin() as conn:
                conn.execute(insert(jobs_table).values(**values))
                self._insert_history(conn, job.id, None, job.status, job.created_at, "created")
        except IntegrityError as exc:
            raise ValueError(f"Job already exists: {job.id}") from exc
        return job.model_copy(deep=True)

    def _fetch_one(self, conn, *where) -> Optional[Job]:
        row = conn.execute(select(jobs_table).where(*where)).first()
        return _row_to_job(row) if row else None

    def _get_sync(self, job_id: str) -> Optional[Job]:
        with self._engine.connect() as conn:
            return self._fetch_one(conn, jobs_table.c.id == job_id)

    def _get_by_provider_sync(self, provider_job_id: str) -> Optional[Job]:
        with self._engine.connect() as conn:
            return self._fetch_one(conn, jobs_table.c.provider_job_id == provider_job_id)

    def _list_sync(self, status: Optional[JobStatus], owner_scope: Optional[str]) -> List[Job]:
        stmt = select(jobs_table)
        if status is not None:
            stmt = stmt.where(jobs_table.c.status == JobStatus(status).value)
        if owner_scope is not None:
            stmt = stmt.where(jobs_table.c.owner_scope == owner_scope)
        stmt = stmt.order_by(jobs_table.c.created_at)
        with self._engine.connect() as conn:
            return [_row_to_job(r) for r in conn.execute(stmt)]

    def _mark_submitted_sync(self, job_id: str, provider_job_id: str, webhook_url: Optional[str]) -> Optional[Job]:
        now = utcnow()
        values = {
            "status": JobStatus.submitted.value,
            "provider_job_id": provider_job_id,
            "updated_at": now,
        }
        if webhook_url:
            values["webhook_url"] = webhook_url
        with self._engine.begin() as conn:
            result = conn.execute(
                update(jobs_table)
                .where(
                    jobs_table.c.id == job_id,
                    jobs_table.c.status == JobStatus.pending.value,
                    jobs_table.c.provider_job_id.is_(None),
                )
                .values(**values)
            )
            if result.rowcount != 1:
                return None
            self._insert_history(conn, job_id, JobStatus.pending, JobStatus.submitted, now, "provider accepted")
            return self._fetch_one(conn, jobs_table.c.id == job_id)

    def _claim_free(self, token: Optional[str], ttl_seconds: float, now):
        cutoff = now - timedelta(seconds=ttl_seconds)
        clauses = [
            jobs_table.c.completion_claim.is_(None),
            jobs_table.c.claimed_at.is_(None),
            jobs_table.c.claimed_at <= cutoff,
        ]
        if token is not None:
            clauses.append(jobs_table.c.completion_claim == token)
        return or_(*clauses)

    def _claim_sync(self, job_id: str, token: str, ttl_seconds: float) -> Optional[Job]:
        now = utcnow()
        with self._engine.begin() as conn:
            result = conn.execute(
                update(jobs_table)
                .where(
                    jobs_table.c.id == job_id,
                    jobs_table.c.status == JobStatus.submitted.value,
                    self._claim_free(token, ttl_seconds, now),
                )
                .values(completion_claim=token, claimed_at=now)
            )
            if result.rowcount != 1:
                return None
            return self._fetch_one(conn, jobs_table.c.id == job_id)

    def _release_claim_sync(self, job_id: str, token: str) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                update(jobs_table)
                .where(jobs_table.c.id == job_id, jobs_table.c.completion_claim == token)
                .values(completion_claim=None, claimed_at=None)
            )

    def _transition_sync(
        self,
        job_id: str,
        to_status: JobStatus,
        token: Optional[str],
        result_ref: Optional[str],
        origin_fallback_ref: Optional[str],
        error: Optional[str],
        reason: Optional[str],
        claim_ttl: float,
    ) -> Optional[Job]:
        with self._engine.begin() as conn:
            current = self._fetch_one(conn, jobs_table.c.id == job_id)
            if current is None or not current.can_transition(to_status):
                return None
            now = max(utcnow(), current.updated_at)
            values = {"status": to_status.value, "updated_at": now}
            if result_ref is not None:
                values["result_ref"] = result_ref
            if origin_fallback_ref is not None:
                values["origin_fallback_ref"] = origin_fallback_ref
            if error is not None:
                values["error"] = error
            if to_status in TERMINAL_STATUSES:
                values["completion_claim"] = None
                values["claimed_at"] = None
            result = conn.execute(
                update(jobs_table)
                .where(
                    and_(
                        jobs_table.c.id == job_id,
                        jobs_table.c.status == current.status.value,
                        self._claim_free(token, claim_ttl, utcnow()),
                    )
                )
                .values(**values)
            )
            if result.rowcount != 1:
                return None
            self._insert_history(conn, job_id, current.status, to_status, now, reason)
            return self._fetch_one(conn, jobs_table.c.id == job_id)

    def _history_sync(self, job_id: str) -> List[JobTransition]:
        stmt = (
            select(job_history_table)
            .where(job_history_table.c.job_id == job_id)
            .order_by(job_history_table.c.seq)
        )
        with self._engine.connect() as conn:
            return [
                JobTransition(
                    from_status=r.from_status,
                    to_status=r.to_status,
                    at=as_utc(r.at),
                    reason=r.reason,
                )
                for r in conn.execute(stmt)
            ]

    # -- port ----------------------------------------------------------------

    async def create(self, job: Job) -> Job:
        return await asyncio.to_thread(self._create_sync, job)

    async def get(self, job_id: str) -> Optional[Job]:
        return await asyncio.to_thread(self._get_sync, job_id)

    async def get_by_provider_job_id(self, provider_job_id: str) -> Optional[Job]:
        return await asyncio.to_thread(self._get_by_provider_sync, provider_job_id)

    async def list(
        self,
        status: Optional[JobStatus] = None,
        owner_scope: Optional[str] = None,
    ) -> Sequence[Job]:
        return await asyncio.to_thread(self._list_sync, status, owner_scope)

    async def mark_submitted(self, job_id: str, provider_job_id: str, webhook_url: Optional[str] = None) -> Optional[Job]:
        return await asyncio.to_thread(self._mark_submitted_sync, job_id, provider_job_id, webhook_url)

    async def claim(self, job_id: str, token: str, ttl_seconds: float) -> Optional[Job]:
        return await asyncio.to_thread(self._claim_sync, job_id, token, ttl_seconds)

    async def release_claim(self, job_id: str, token: str) -> None:
        await asyncio.to_thread(self._release_claim_sync, job_id, token)

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
        return await asyncio.to_thread(
            self._transition_sync,
            job_id,
            to_status,
            token,
            result_ref,
            origin_fallback_ref,
            error,
            reason,
            claim_ttl,
        )

    async def history(self, job_id: str) -> List[JobTransition]:
        return await asyncio.to_thread(self._history_sync, job_id)
