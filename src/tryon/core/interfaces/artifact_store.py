from typing import Protocol


class ArtifactStorePort(Protocol):
    """Durable object storage for generated images."""

    async def put(self, key: str, data: bytes, content_type: str) -> str:  # pragma: no cover - protocol
        """Store `data` under `key` and return its durable public URL.

        Raises on any storage failure; callers decide about fallbacks.
        """
        ...
