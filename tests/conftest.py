"""Shared test adapters.

Hand-written fakes for the outbound ports so manager tests run without
network access. Each fake records what it was asked to do.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from tryon.adapters.job_repository_inmemory import InMemoryJobRepository
from tryon.adapters.quota_store_inmemory import InMemoryQuotaStore
from tryon.core.config import TryOnConfig
from tryon.core.exceptions import UpstreamHttpError
from tryon.core.interfaces.http_client import HttpClientPort
from tryon.core.models.job import Category, Job, JobStatus
from tryon.core.models.problem import ProblemResponse

ASSET_HOST = "https://files.test"
API_BASE = "https://api.test/api"
PUBLIC_BASE = "https://gw.test"
HUMAN_URL = "https://images.test/human.jpg"
GARMENT_URL = "https://images.test/shirt.jpg"


def upstream(status: int, title: str = "Upstream Error") -> UpstreamHttpError:
    return UpstreamHttpError(ProblemResponse(title=title, status=status, detail=title))


class FakeHttpClient(HttpClientPort):
    """Scriptable HttpClientPort.

    - heads: url -> status code or exception (default 404)
    - gets: url -> JSON dict or exception (default 404 error)
    - downloads: url -> (bytes, content_type) or exception
    - posts: queue of responses/exceptions consumed in order
    """

    def __init__(self) -> None:
        self.heads: Dict[str, Any] = {}
        self.gets: Dict[str, Any] = {}
        self.downloads: Dict[str, Any] = {}
        self.posts: List[Any] = []
        self.head_calls: List[str] = []
        self.get_calls: List[Tuple[str, Optional[dict]]] = []
        self.post_calls: List[dict] = []
        self.download_calls: List[str] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def close(self) -> None:
        return None

    async def head(self, url: str, timeout: float | None = None) -> int:
        self.head_calls.append(url)
        outcome = self.heads.get(url, 404)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def get(self, url: str, timeout: float | None = None, headers: Dict[str, str] | None = None) -> Dict[str, Any]:
        self.get_calls.append((url, headers))
        outcome = self.gets.get(url, upstream(404, "Not Found"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def get_bytes(self, url: str, timeout: float | None = None):
        self.download_calls.append(url)
        outcome = self.downloads.get(url, upstream(404, "Not Found"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def post(self, url: str, json: Dict[str, Any] | None, timeout: float | None = None, headers: Dict[str, str] | None = None) -> Dict[str, Any]:
        self.post_calls.append({"url": url, "json": json, "headers": headers})
        if not self.posts:
            raise AssertionError(f"unexpected POST {url}")
        outcome = self.posts.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeArtifactStore:
    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.put_calls = 0

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.put_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise OSError("bucket unavailable")
        self.objects[key] = (data, content_type)
        return f"https://cdn.test/{key}"


class RecordingObserver:
    def __init__(self) -> None:
        self.created: List[str] = []
        self.changes: List[Tuple[str, Optional[JobStatus], JobStatus]] = []
        self.completed: List[Tuple[str, JobStatus]] = []

    async def on_job_created(self, job: Job) -> None:
        self.created.append(job.id)

    async def on_status_changed(self, job: Job, previous_status: Optional[JobStatus]) -> None:
        self.changes.append((job.id, previous_status, job.status))

    async def on_job_completed(self, job: Job) -> None:
        self.completed.append((job.id, job.status))


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


def make_config(**overrides) -> TryOnConfig:
    values = dict(
        provider_api_url=API_BASE,
        provider_api_key="test-key",
        asset_host=ASSET_HOST,
        public_base_url=PUBLIC_BASE,
        poll_initial_delay=0,
        poll_interval=0.01,
        poll_max_attempts=3,
        poll_provider_status=False,
        probe_timeout=1.0,
        submit_max_retries=3,
        submit_retry_base_wait=0.01,
        submit_retry_max_wait=0.02,
        completion_claim_ttl=30.0,
        artifact_prefix="results",
    )
    values.update(overrides)
    return TryOnConfig(**values)


async def create_submitted_job(repo, job_id: str = "job-1", provider_job_id: str = "prov-1", scope: str = "global") -> Job:
    job = Job(
        id=job_id,
        owner_scope=scope,
        human_image_ref=HUMAN_URL,
        garment_image_ref=GARMENT_URL,
        category=Category.upper_body,
    )
    await repo.create(job)
    return await repo.mark_submitted(job_id, provider_job_id, f"{PUBLIC_BASE}/webhook?job_id={job_id}")


@pytest.fixture
def config() -> TryOnConfig:
    return make_config()


@pytest.fixture
def http() -> FakeHttpClient:
    return FakeHttpClient()


@pytest.fixture
def repo() -> InMemoryJobRepository:
    return InMemoryJobRepository()


@pytest.fixture
def quota_store() -> InMemoryQuotaStore:
    return InMemoryQuotaStore({"global": 5})


@pytest.fixture
def artifact_store() -> FakeArtifactStore:
    return FakeArtifactStore()
