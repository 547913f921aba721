"""Webhook and polling completion, and the race between them."""

import asyncio

import pytest

from tryon.core.managers.artifact_persister import ArtifactPersister
from tryon.core.managers.completion_watcher import CompletionWatcher, WebhookOutcome
from tryon.core.managers.observers import ObserverDispatcher
from tryon.core.managers.result_resolver import ResultResolver
from tryon.core.models.job import Category, Job, JobStatus, JobStatusView

from conftest import (
    API_BASE,
    ASSET_HOST,
    FakeArtifactStore,
    RecordingObserver,
    create_submitted_job,
    make_config,
    no_sleep,
)

OUTPUT_URL = f"{ASSET_HOST}/prov-1.jpg"


def build_watcher(http, repo, store, config, observer=None, sleep=no_sleep):
    dispatcher = ObserverDispatcher([observer] if observer else [])
    return CompletionWatcher(
        repo,
        ResultResolver(http, config),
        ArtifactPersister(http, store, config),
        http,
        config,
        dispatcher=dispatcher,
        sleep=sleep,
    )


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def watcher(http, repo, artifact_store, config, observer):
    http.downloads[OUTPUT_URL] = (b"jpeg-bytes", "image/jpeg")
    return build_watcher(http, repo, artifact_store, config, observer)


async def test_webhook_success_persists_and_completes(watcher, repo, artifact_store, observer):
    await create_submitted_job(repo)

    outcome = await watcher.handle_webhook(
        {"id": "prov-1", "status": "success", "output": OUTPUT_URL}, job_id="job-1"
    )

    job = await repo.get("job-1")
    assert outcome == WebhookOutcome.COMPLETED
    assert job.status == JobStatus.completed
    assert job.result_ref == "https://cdn.test/results/global/job-1.jpg"
    assert job.origin_fallback_ref is None
    assert artifact_store.put_calls == 1
    assert observer.completed == [("job-1", JobStatus.completed)]


async def test_duplicate_webhook_is_acknowledged_without_effect(watcher, repo, artifact_store, observer):
    await create_submitted_job(repo)
    payload = {"id": "prov-1", "status": "succeeded", "output": OUTPUT_URL}

    first = await watcher.handle_webhook(payload, job_id="job-1")
    second = await watcher.handle_webhook(payload, job_id="job-1")

    assert first == WebhookOutcome.COMPLETED
    assert second == WebhookOutcome.IGNORED
    assert artifact_store.put_calls == 1
    assert len(observer.completed) == 1


async def test_webhook_located_by_provider_id(watcher, repo):
    await create_submitted_job(repo)

    outcome = await watcher.handle_webhook({"_id": "prov-1", "status": "success", "output": OUTPUT_URL})

    assert outcome == WebhookOutcome.COMPLETED


async def test_unknown_job_is_noise(watcher, repo):
    outcome = await watcher.handle_webhook({"id": "ghost", "status": "success", "output": OUTPUT_URL})
    assert outcome == WebhookOutcome.IGNORED

    outcome = await watcher.handle_webhook("not even a dict", job_id="nope")
    assert outcome == WebhookOutcome.IGNORED


async def test_provider_id_mismatch_is_ignored(watcher, repo):
    await create_submitted_job(repo)

    outcome = await watcher.handle_webhook(
        {"id": "someone-else", "status": "success", "output": OUTPUT_URL}, job_id="job-1"
    )

    assert outcome == WebhookOutcome.IGNORED
    assert (await repo.get("job-1")).status == JobStatus.submitted


async def test_webhook_failure_marks_job_failed(watcher, repo, observer):
    await create_submitted_job(repo)

    outcome = await watcher.handle_webhook(
        {"id": "prov-1", "status": "failed", "error": "garment not detected"}, job_id="job-1"
    )

    job = await repo.get("job-1")
    assert outcome == WebhookOutcome.FAILED
    assert job.status == JobStatus.failed
    assert job.error == "garment not detected"
    assert observer.completed == [("job-1", JobStatus.failed)]


async def test_progress_status_is_noise(watcher, repo):
    await create_submitted_job(repo)

    outcome = await watcher.handle_webhook({"id": "prov-1", "status": "processing"}, job_id="job-1")

    assert outcome == WebhookOutcome.WAITING
    assert (await repo.get("job-1")).status == JobStatus.submitted


async def test_success_without_output_uses_resolver(watcher, http, repo):
    await create_submitted_job(repo)
    http.heads[f"{ASSET_HOST}/prov-1.png"] = 200
    http.downloads[f"{ASSET_HOST}/prov-1.png"] = (b"png-bytes", "image/png")

    outcome = await watcher.handle_webhook({"id": "prov-1", "status": "success"}, job_id="job-1")

    assert outcome == WebhookOutcome.COMPLETED
    assert (await repo.get("job-1")).result_ref.endswith("job-1.png")


async def test_success_without_output_not_ready_leaves_job_to_poller(watcher, repo):
    await create_submitted_job(repo)

    outcome = await watcher.handle_webhook({"id": "prov-1", "status": "success"}, job_id="job-1")

    assert outcome == WebhookOutcome.WAITING
    assert (await repo.get("job-1")).status == JobStatus.submitted
    await watcher.shutdown()


async def test_webhook_errors_are_absorbed(watcher, repo):
    await create_submitted_job(repo)

    async def broken_get(job_id):
        raise RuntimeError("store offline")

    repo.get = broken_get

    assert await watcher.handle_webhook({"status": "success"}, job_id="job-1") == WebhookOutcome.ERROR


async def test_persist_failure_completes_with_fallback(http, repo, config, observer):
    http.downloads[OUTPUT_URL] = (b"jpeg-bytes", "image/jpeg")
    watcher = build_watcher(http, repo, FakeArtifactStore(fail=True), config, observer)
    await create_submitted_job(repo)

    await watcher.handle_webhook({"id": "prov-1", "status": "success", "output": OUTPUT_URL}, job_id="job-1")

    job = await repo.get("job-1")
    view = JobStatusView.from_job(job)
    assert job.status == JobStatus.completed
    assert job.result_ref is None
    assert job.origin_fallback_ref == OUTPUT_URL
    assert view.resultUrl == OUTPUT_URL
    assert view.fallback is True


async def test_polling_completes_when_result_appears(watcher, http, repo, observer):
    await create_submitted_job(repo)
    http.heads[f"{ASSET_HOST}/prov-1.jpg"] = 200

    watcher.schedule_poll("job-1")
    await watcher.wait_idle()

    assert (await repo.get("job-1")).status == JobStatus.completed
    assert observer.completed == [("job-1", JobStatus.completed)]


async def test_polling_budget_exhaustion_fails_job(watcher, http, repo):
    await create_submitted_job(repo)

    watcher.schedule_poll("job-1")
    await watcher.wait_idle()

    job = await repo.get("job-1")
    assert job.status == JobStatus.failed
    assert "after 3 polling attempts" in job.error
    # 3 ticks x 5 candidates
    assert len(http.head_calls) == 15


async def test_late_webhook_does_not_revive_timed_out_job(watcher, repo, artifact_store):
    await create_submitted_job(repo)
    watcher.schedule_poll("job-1")
    await watcher.wait_idle()

    outcome = await watcher.handle_webhook(
        {"id": "prov-1", "status": "success", "output": OUTPUT_URL}, job_id="job-1"
    )

    assert outcome == WebhookOutcome.IGNORED
    assert (await repo.get("job-1")).status == JobStatus.failed
    assert artifact_store.put_calls == 0


async def test_polling_reads_provider_status_when_enabled(http, repo, artifact_store, observer):
    config = make_config(poll_provider_status=True)
    watcher = build_watcher(http, repo, artifact_store, config, observer)
    await create_submitted_job(repo)
    http.gets[f"{API_BASE}/generations/prov-1"] = {"id": "prov-1", "status": "failed", "error": "nsfw"}

    watcher.schedule_poll("job-1")
    await watcher.wait_idle()

    job = await repo.get("job-1")
    assert job.status == JobStatus.failed
    assert job.error == "nsfw"
    url, headers = http.get_calls[0]
    assert headers == {"Authorization": "test-key"}


async def test_concurrent_completers_persist_once(http, repo, config, observer):
    http.downloads[OUTPUT_URL] = (b"jpeg-bytes", "image/jpeg")
    slow_store = FakeArtifactStore(delay=0.05)
    watcher = build_watcher(http, repo, slow_store, config, observer)
    await create_submitted_job(repo)

    results = await asyncio.gather(
        watcher.complete("job-1", OUTPUT_URL, "webhook"),
        watcher.complete("job-1", OUTPUT_URL, "poll"),
    )

    assert sum(r is not None for r in results) == 1
    assert slow_store.put_calls == 1
    assert observer.completed == [("job-1", JobStatus.completed)]


async def test_failure_is_refused_while_completion_in_flight(watcher, repo):
    job = await create_submitted_job(repo)
    await repo.claim("job-1", "other-actor", ttl_seconds=60)

    assert await watcher.fail(job, "timed out", "test") is None
    assert (await repo.get("job-1")).status == JobStatus.submitted


async def test_expired_claim_does_not_block_completion(watcher, repo):
    await create_submitted_job(repo)
    await repo.claim("job-1", "crashed-actor", ttl_seconds=60)
    await repo.expire_claim("job-1", age_seconds=3600)

    done = await watcher.complete("job-1", OUTPUT_URL, "webhook")

    assert done is not None
    assert done.status == JobStatus.completed


async def test_reconcile_resumes_submitted_and_fails_pending(watcher, http, repo):
    await create_submitted_job(repo, job_id="job-1", provider_job_id="prov-1")
    await repo.create(
        Job(
            id="job-2",
            human_image_ref="https://images.test/h.jpg",
            garment_image_ref="https://images.test/g.jpg",
            category=Category.lower_body,
        )
    )
    http.heads[f"{ASSET_HOST}/prov-1.jpg"] = 200

    resumed = await watcher.reconcile()
    await watcher.wait_idle()

    assert resumed == 1
    assert (await repo.get("job-1")).status == JobStatus.completed
    assert (await repo.get("job-2")).status == JobStatus.failed


async def test_shutdown_cancels_polling(http, repo, artifact_store):
    config = make_config(poll_initial_delay=60)
    watcher = build_watcher(http, repo, artifact_store, config, sleep=asyncio.sleep)
    await create_submitted_job(repo)

    watcher.schedule_poll("job-1")
    watcher.schedule_poll("job-1")
    assert watcher.active_polls == 1

    await watcher.shutdown()

    assert watcher.active_polls == 0
    assert (await repo.get("job-1")).status == JobStatus.submitted


@pytest.mark.parametrize(
    "status_answer",
    [
        {"id": "prov-1", "status": 3},
        ValueError("Expecting value: line 1 column 1 (char 0)"),
    ],
)
async def test_broken_provider_status_still_times_out(http, repo, artifact_store, observer, status_answer):
    config = make_config(poll_provider_status=True)
    watcher = build_watcher(http, repo, artifact_store, config, observer)
    await create_submitted_job(repo)
    http.gets[f"{API_BASE}/generations/prov-1"] = status_answer

    watcher.schedule_poll("job-1")
    await watcher.wait_idle()

    job = await repo.get("job-1")
    assert job.status == JobStatus.failed
    assert "after 3 polling attempts" in job.error
    assert len(http.get_calls) == 3
    # resolver still probes on every tick
    assert len(http.head_calls) == 15
    assert observer.completed == [("job-1", JobStatus.failed)]


async def test_webhook_before_submission_is_dropped(watcher, repo):
    await repo.create(
        Job(
            id="job-2",
            human_image_ref="https://images.test/h.jpg",
            garment_image_ref="https://images.test/g.jpg",
            category=Category.upper_body,
        )
    )

    outcome = await watcher.handle_webhook({"status": "success", "output": OUTPUT_URL}, job_id="job-2")

    assert outcome == WebhookOutcome.IGNORED
    assert (await repo.get("job-2")).status == JobStatus.pending
