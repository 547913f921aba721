from typing import Protocol

from tryon.core.models.events import JobEvent


class NotifierPort(Protocol):
    """Outbound channel for job status events.

    Delivery is best-effort: implementations must not raise into the caller
    for a slow or missing consumer.
    """

    async def publish(self, event: JobEvent) -> None:  # pragma: no cover - protocol
        ...
