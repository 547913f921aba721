"""AssetPrecheck: make sure both source images are fetchable before anything is spent."""

from tryon.core.exceptions import AssetUnreachableError, UpstreamHttpError
from tryon.core.interfaces.http_client import HttpClientPort
from tryon.core.settings import logger
from tryon.utils import shorten


class AssetPrecheck:
    def __init__(self, http_client: HttpClientPort, timeout: float = 5.0) -> None:
        self._http = http_client
        self._timeout = timeout

    async def check(self, human_url: str, garment_url: str) -> None:
        """HEAD each image; the first one that is not 2xx raises AssetUnreachableError."""
        for asset, url in (("human", human_url), ("garment", garment_url)):
            await self._check_one(asset, url)

    async def _check_one(self, asset: str, url: str) -> None:
        try:
            status = await self._http.head(url, timeout=self._timeout)
        except UpstreamHttpError as exc:
            logger.info(f"[precheck] {asset} unreachable url={shorten(url)} error={exc}")
            raise AssetUnreachableError(asset, url, diagnostic=str(exc)) from exc

        if not 200 <= status < 300:
            logger.info(f"[precheck] {asset} rejected url={shorten(url)} status={status}")
            raise AssetUnreachableError(asset, url, upstream_status=status)

        logger.debug(f"[precheck] {asset} ok url={shorten(url)}")
