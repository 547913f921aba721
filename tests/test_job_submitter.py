"""JobSubmitter ordering and failure handling.

Order under test: validate -> precheck -> quota -> pending job -> provider.
Nothing is spent before the images pass, no job exists without a quota
unit, and a provider failure leaves a failed job without refunding quota.
"""

import pytest

from tryon.adapters.retry_tenacity import TenacityRetryAdapter
from tryon.core.exceptions import (
    AssetUnreachableError,
    InputValidationError,
    ProviderError,
    QuotaExceededError,
)
from tryon.core.managers.asset_precheck import AssetPrecheck
from tryon.core.managers.job_submitter import JobSubmitter, TransientProviderError
from tryon.core.managers.observers import ObserverDispatcher
from tryon.core.managers.quota_gate import QuotaGate
from tryon.core.models.job import Category, JobStatus

from conftest import API_BASE, GARMENT_URL, HUMAN_URL, PUBLIC_BASE, RecordingObserver, upstream


def request_body(**overrides):
    body = {
        "human": HUMAN_URL,
        "garment": GARMENT_URL,
        "category": "upper_body",
        "garment_description": "red hoodie",
    }
    body.update(overrides)
    return body


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def submitter(http, repo, quota_store, config, observer):
    http.heads[HUMAN_URL] = 200
    http.heads[GARMENT_URL] = 200
    return JobSubmitter(
        http,
        repo,
        QuotaGate(quota_store),
        AssetPrecheck(http),
        config,
        dispatcher=ObserverDispatcher([observer]),
        retry_port=TenacityRetryAdapter(wait_initial=0.001, wait_max=0.002),
    )


async def test_successful_submission(submitter, http, repo, quota_store, observer):
    http.posts.append({"status": 200, "headers": {}, "body": {"id": "prov-42"}})

    job = await submitter.submit(request_body(category="Upper_Body", store_name="global"))

    assert job.status == JobStatus.submitted
    assert job.provider_job_id == "prov-42"
    assert job.category == Category.upper_body
    assert await quota_store.get("global") == 4

    call = http.post_calls[0]
    assert call["url"] == f"{API_BASE}/generate"
    assert call["headers"]["Authorization"] == "test-key"
    assert call["json"] == {
        "model": "try-clothes",
        "input": {
            "human": HUMAN_URL,
            "garment": GARMENT_URL,
            "category": "upper_body",
            "garment_description": "red hoodie",
        },
        "webhook": f"{PUBLIC_BASE}/webhook?job_id={job.id}",
    }
    assert observer.created == [job.id]
    assert observer.changes == [(job.id, JobStatus.pending, JobStatus.submitted)]
    assert (await repo.get(job.id)).webhook_url.endswith(job.id)


async def test_legacy_underscore_id_is_accepted(submitter, http):
    http.posts.append({"status": 201, "headers": {}, "body": {"_id": 1234}})

    job = await submitter.submit(request_body())

    assert job.provider_job_id == "1234"


@pytest.mark.parametrize(
    "overrides",
    [
        {"category": "hat"},
        {"human": "not-a-url"},
        {"garment": "ftp://images.test/g.jpg"},
        {"human": None},
    ],
)
async def test_invalid_input_creates_nothing(submitter, http, repo, quota_store, overrides):
    with pytest.raises(InputValidationError):
        await submitter.submit(request_body(**overrides))

    assert http.head_calls == []
    assert await repo.list() == []
    assert await quota_store.get("global") == 5


async def test_unreachable_image_spends_nothing(submitter, http, repo, quota_store):
    http.heads[GARMENT_URL] = 404

    with pytest.raises(AssetUnreachableError) as excinfo:
        await submitter.submit(request_body())

    assert excinfo.value.asset == "garment"
    assert excinfo.value.upstream_status == 404
    assert await repo.list() == []
    assert await quota_store.get("global") == 5


async def test_exhausted_quota_creates_no_job(submitter, repo, quota_store):
    await quota_store.set("global", 0)

    with pytest.raises(QuotaExceededError):
        await submitter.submit(request_body())

    assert await repo.list() == []


async def test_store_name_selects_quota_scope(submitter, quota_store):
    with pytest.raises(QuotaExceededError) as excinfo:
        await submitter.submit(request_body(store_name="shop-7"))
    assert excinfo.value.scope == "shop-7"


async def test_provider_rejection_fails_job_without_refund(submitter, http, repo, quota_store, observer):
    http.posts.append({"status": 400, "headers": {}, "body": {"message": "bad garment"}})

    with pytest.raises(ProviderError) as excinfo:
        await submitter.submit(request_body())

    assert excinfo.value.upstream_status == 400
    assert len(http.post_calls) == 1
    job = await repo.get(excinfo.value.job_id)
    assert job.status == JobStatus.failed
    assert "400" in job.error
    assert await quota_store.get("global") == 4
    assert observer.completed == [(job.id, JobStatus.failed)]


async def test_transient_provider_errors_are_retried(submitter, http):
    http.posts.extend([
        {"status": 503, "headers": {}, "body": "busy"},
        upstream(504, "Upstream Timeout"),
        {"status": 200, "headers": {}, "body": {"id": "prov-9"}},
    ])

    job = await submitter.submit(request_body())

    assert job.provider_job_id == "prov-9"
    assert len(http.post_calls) == 3


async def test_retry_exhaustion_fails_job(submitter, http, repo):
    http.posts.extend([{"status": 502, "headers": {}, "body": "bad gateway"}] * 3)

    with pytest.raises(TransientProviderError) as excinfo:
        await submitter.submit(request_body())

    assert (await repo.get(excinfo.value.job_id)).status == JobStatus.failed


async def test_missing_provider_id_fails_job(submitter, http, repo):
    http.posts.append({"status": 200, "headers": {}, "body": {"status": "queued"}})

    with pytest.raises(ProviderError) as excinfo:
        await submitter.submit(request_body())

    job = await repo.get(excinfo.value.job_id)
    assert job.status == JobStatus.failed
    assert job.provider_job_id is None


async def test_unexpected_submission_error_fails_job(submitter, http, repo, quota_store, observer):
    http.posts.append(ValueError("Expecting value: line 1 column 1 (char 0)"))

    with pytest.raises(ProviderError) as excinfo:
        await submitter.submit(request_body())

    job = await repo.get(excinfo.value.job_id)
    assert job.status == JobStatus.failed
    assert job.error.startswith("Provider submission failed")
    assert "Expecting value" in job.error
    assert await quota_store.get("global") == 4
    assert observer.completed == [(job.id, JobStatus.failed)]
