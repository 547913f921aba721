"""QuotaGate: per-scope usage allowance in front of job creation."""

from typing import Optional

from tryon.core.exceptions import QuotaExceededError, QuotaStoreError
from tryon.core.interfaces.quota_store import QuotaStorePort
from tryon.core.models.quota import QuotaAllowance, QuotaReservation
from tryon.core.settings import logger


class QuotaGate:
    def __init__(self, store: QuotaStorePort) -> None:
        self._store = store

    async def try_reserve(self, owner_scope: str) -> QuotaReservation:
        """Spend one unit of `owner_scope`'s allowance.

        Raises QuotaExceededError when nothing is left and QuotaStoreError when
        the backing store is unavailable. Both leave the counter unchanged.
        """
        try:
            reservation = await self._store.reserve(owner_scope)
        except QuotaStoreError:
            raise
        except Exception as exc:
            logger.error(f"[quota:reserve] store failure scope={owner_scope} error={exc}")
            raise QuotaStoreError("Quota store unavailable", diagnostic=str(exc)) from exc

        if not reservation.ok:
            logger.info(f"[quota:reserve] exhausted scope={owner_scope}")
            raise QuotaExceededError(owner_scope)

        logger.debug(f"[quota:reserve] ok scope={owner_scope} remaining={reservation.remaining}")
        return reservation

    async def current(self, owner_scope: str) -> Optional[int]:
        """Raw counter; None for a scope that was never configured."""
        return await self._store.get(owner_scope)

    async def remaining(self, owner_scope: str) -> QuotaAllowance:
        value: Optional[int] = await self._store.get(owner_scope)
        return QuotaAllowance(scope=owner_scope, remainingTrials=value or 0)

    async def set_allowance(self, owner_scope: str, value: int) -> QuotaAllowance:
        if value < 0:
            raise ValueError("remainingTrials must be >= 0")
        await self._store.set(owner_scope, value)
        logger.info(f"[quota:set] scope={owner_scope} remaining={value}")
        return QuotaAllowance(scope=owner_scope, remainingTrials=value)
