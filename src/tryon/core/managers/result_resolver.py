"""ResultResolver: find the provider's result file by probing candidate URLs.

The provider publishes results as ``<asset_host>/<provider_job_id>.<ext>`` but
does not say which extension it picked, so every known variant (the literal
``undefined`` included) is tried in a fixed order with HEAD requests.

A 403 normally means "exists, not deliverable yet" and probing moves on.
Identifiers shaped like UUIDs are the exception: the asset host answers 403
for finished UUID results, so that candidate is treated as ready.
"""

from typing import List

from tryon.core.config import TryOnConfig
from tryon.core.exceptions import UpstreamHttpError
from tryon.core.interfaces.http_client import HttpClientPort
from tryon.core.models.resolution import ProbeObservation, Resolution
from tryon.core.settings import logger
from tryon.utils import is_uuid_shaped


class ResultResolver:
    def __init__(self, http_client: HttpClientPort, config: TryOnConfig) -> None:
        self._http = http_client
        self.config = config

    def candidates(self, provider_job_id: str) -> List[str]:
        host = self.config.asset_host.rstrip("/")
        return [f"{host}/{provider_job_id}.{ext}" for ext in self.config.result_extensions]

    @staticmethod
    def _malformed(provider_job_id: str) -> bool:
        return not provider_job_id or "/" in provider_job_id or any(c.isspace() for c in provider_job_id)

    async def resolve(self, provider_job_id: str) -> Resolution:
        if self._malformed(provider_job_id or ""):
            logger.warning(f"[resolve] malformed provider id={provider_job_id!r}")
            return Resolution.error(f"Malformed provider job id: {provider_job_id!r}")

        uuid_shaped = is_uuid_shaped(provider_job_id)
        probes: List[ProbeObservation] = []

        for url in self.candidates(provider_job_id):
            try:
                status = await self._http.head(url, timeout=self.config.probe_timeout)
            except UpstreamHttpError as exc:
                probes.append(ProbeObservation(url=url, error=exc.response.title))
                continue

            probes.append(ProbeObservation(url=url, status=status))
            if status == 200:
                logger.debug(f"[resolve] ready provider_job_id={provider_job_id} url={url}")
                return Resolution.ready(url, probes)
            if status == 403 and uuid_shaped:
                logger.debug(f"[resolve] ready (403, uuid id) provider_job_id={provider_job_id} url={url}")
                return Resolution.ready(url, probes)

        summary = ",".join(str(p.status) if p.status is not None else "err" for p in probes)
        logger.debug(f"[resolve] not ready provider_job_id={provider_job_id} probes={summary}")
        return Resolution.not_ready(probes, detail=f"no deliverable candidate ({summary})")
