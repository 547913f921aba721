"""SQL quota counters.

Reservation is one conditional UPDATE (`remaining = remaining - 1 WHERE
remaining > 0`), so the database arbitrates concurrent callers across
processes. Driver errors surface as QuotaStoreError.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from sqlalchemy import Engine, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tryon.adapters.sql_schema import quota_table
from tryon.core.exceptions import QuotaStoreError
from tryon.core.interfaces.quota_store import QuotaStorePort
from tryon.core.models.quota import QuotaReservation
from tryon.core.settings import logger


class SqlQuotaStore(QuotaStorePort):
    def __init__(self, engine: Engine, default_quota: int = 0) -> None:
        self._engine = engine
        self._default_quota = default_quota

    def _ensure_scope(self, scope: str) -> None:
        with self._engine.connect() as conn:
            exists = conn.execute(
                select(quota_table.c.scope).where(quota_table.c.scope == scope)
            ).first()
        if exists:
            return
        try:
            with self._engine.begin() as conn:
                conn.execute(insert(quota_table).values(scope=scope, remaining=self._default_quota))
        except IntegrityError:
            # another caller created the row first
            pass

    def _reserve_sync(self, scope: str) -> QuotaReservation:
        self._ensure_scope(scope)
        with self._engine.begin() as conn:
            result = conn.execute(
                update(quota_table)
                .where(quota_table.c.scope == scope, quota_table.c.remaining > 0)
                .values(remaining=quota_table.c.remaining - 1)
            )
            remaining = conn.execute(
                select(quota_table.c.remaining).where(quota_table.c.scope == scope)
            ).scalar_one()
        return QuotaReservation(scope=scope, remaining=max(remaining, 0), ok=result.rowcount == 1)

    def _get_sync(self, scope: str) -> Optional[int]:
        with self._engine.connect() as conn:
            return conn.execute(
                select(quota_table.c.remaining).where(quota_table.c.scope == scope)
            ).scalar_one_or_none()

    def _set_sync(self, scope: str, remaining: int) -> None:
        with self._engine.begin() as conn:
            result = conn.execute(
                update(quota_table).where(quota_table.c.scope == scope).values(remaining=remaining)
            )
            if result.rowcount == 0:
                conn.execute(insert(quota_table).values(scope=scope, remaining=remaining))

    async def _run(self, op: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except SQLAlchemyError as exc:
            logger.error("[quota:%s] store failure error=%s", op, exc)
            raise QuotaStoreError("Quota store unavailable", diagnostic=str(exc)) from exc

    async def reserve(self, scope: str) -> QuotaReservation:
        return await self._run("reserve", self._reserve_sync, scope)

    async def get(self, scope: str) -> Optional[int]:
        return await self._run("get", self._get_sync, scope)

    async def set(self, scope: str, remaining: int) -> None:
        if remaining < 0:
            raise ValueError("remaining must be >= 0")
        await self._run("set", self._set_sync, scope, remaining)
