"""Filesystem artifact store; files are served by the web adapter under /artifacts."""
from __future__ import annotations

import asyncio
import os
from pathlib import Path

from tryon.core.interfaces.artifact_store import ArtifactStorePort
from tryon.core.settings import logger


class LocalArtifactStore(ArtifactStorePort):
    def __init__(self, base_path: str, public_base_url: str) -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _write(self, key: str, data: bytes) -> Path:
        target = (self.base_path / key).resolve()
        if self.base_path.resolve() not in target.parents:
            raise ValueError(f"Artifact key escapes storage root: {key}")
        target.parent.mkdir(parents=True, exist_ok=True)
        # write-then-rename so readers never see a partial file
        tmp = target.with_suffix(target.suffix + ".part")
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, target)
        return target

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = await asyncio.to_thread(self._write, key, data)
        logger.debug("[artifact:local] stored key=%s bytes=%s path=%s", key, len(data), path)
        return f"{self.public_base_url}/{key}"
