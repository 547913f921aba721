"""In-memory quota counters guarded by an asyncio.Lock."""
from __future__ import annotations

import asyncio
from typing import Dict, Optional

from tryon.core.interfaces.quota_store import QuotaStorePort
from tryon.core.models.quota import QuotaReservation


class InMemoryQuotaStore(QuotaStorePort):
    def __init__(self, initial: Optional[Dict[str, int]] = None, default_quota: int = 0) -> None:
        self._remaining: Dict[str, int] = dict(initial or {})
        self._default_quota = default_quota
        self._lock = asyncio.Lock()

    async def reserve(self, scope: str) -> QuotaReservation:
        async with self._lock:
            # unknown scopes start from the default allowance
            remaining = self._remaining.setdefault(scope, self._default_quota)
            if remaining <= 0:
                return QuotaReservation(scope=scope, remaining=0, ok=False)
            self._remaining[scope] = remaining - 1
            return QuotaReservation(scope=scope, remaining=remaining - 1, ok=True)

    async def get(self, scope: str) -> Optional[int]:
        async with self._lock:
            return self._remaining.get(scope)

    async def set(self, scope: str, remaining: int) -> None:
        if remaining < 0:
            raise ValueError("remaining must be >= 0")
        async with self._lock:
            self._remaining[scope] = remaining
