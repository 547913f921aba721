from abc import ABC, abstractmethod
from typing import Optional

from tryon.core.models.quota import QuotaReservation


class QuotaStorePort(ABC):
    """Per-scope counter of remaining try-on allowance.

    `reserve` must be atomic per scope: with C units left and N > C
    concurrent callers exactly C reservations succeed. Backing-store failures
    raise QuotaStoreError and leave the counter unchanged.
    """

    @abstractmethod
    async def reserve(self, scope: str) -> QuotaReservation:
        """Decrement by one if positive. `ok` is False when nothing was left."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, scope: str) -> Optional[int]:
        """Remaining allowance, or None for a scope that was never configured."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, scope: str, remaining: int) -> None:
        """Administrative reset of a scope's allowance."""
        raise NotImplementedError
