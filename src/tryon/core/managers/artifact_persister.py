"""ArtifactPersister: copy the ephemeral provider result into durable storage."""

from tryon.core.config import TryOnConfig
from tryon.core.exceptions import PersistenceDegraded
from tryon.core.interfaces.artifact_store import ArtifactStorePort
from tryon.core.interfaces.http_client import HttpClientPort
from tryon.core.models.job import Job
from tryon.core.models.resolution import PersistOutcome
from tryon.core.settings import logger
from tryon.utils import CONTENT_TYPE_EXTENSIONS, extension_for_content_type, extension_from_url, shorten


class ArtifactPersister:
    def __init__(self, http_client: HttpClientPort, store: ArtifactStorePort, config: TryOnConfig) -> None:
        self._http = http_client
        self._store = store
        self.config = config

    def key_for(self, job: Job, ext: str) -> str:
        return f"{self.config.artifact_prefix}/{job.owner_scope}/{job.id}.{ext}"

    @staticmethod
    def _extension(content_type: str | None, source_url: str) -> str:
        if content_type and content_type.split(";", 1)[0].strip().lower() in CONTENT_TYPE_EXTENSIONS:
            return extension_for_content_type(content_type)
        return extension_from_url(source_url) or "jpg"

    async def persist(self, source_url: str, job: Job) -> PersistOutcome:
        """Re-host `source_url`. Never raises: failures return the source URL as fallback."""
        try:
            data, content_type = await self._http.get_bytes(source_url, timeout=self.config.fetch_timeout)
            if not data:
                raise ValueError("empty response body")
            ext = self._extension(content_type, source_url)
            key = self.key_for(job, ext)
            durable_url = await self._store.put(key, data, content_type or f"image/{'jpeg' if ext == 'jpg' else ext}")
        except Exception as exc:
            degraded = PersistenceDegraded(source_url, diagnostic=str(exc), job_id=job.id)
            logger.warning(f"[persist] {degraded.title} job_id={job.id} source={shorten(source_url)} error={exc}")
            return PersistOutcome(durable_url=source_url, used_fallback=True, reason=str(exc))

        logger.info(f"[persist] stored job_id={job.id} key={key} bytes={len(data)}")
        return PersistOutcome(durable_url=durable_url, used_fallback=False)
