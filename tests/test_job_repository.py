"""Compare-and-set behaviour shared by the in-memory and SQL job repositories."""

import asyncio

import pytest

from tryon.adapters.job_repository_inmemory import InMemoryJobRepository
from tryon.adapters.job_repository_sql import SqlJobRepository
from tryon.adapters.sql_schema import create_sql_engine
from tryon.core.models.job import Category, Job, JobStatus


def new_job(job_id="job-1", scope="global"):
    return Job(
        id=job_id,
        owner_scope=scope,
        human_image_ref="https://images.test/h.jpg",
        garment_image_ref="https://images.test/g.jpg",
        category=Category.upper_body,
        garment_description="blue shirt",
    )


@pytest.fixture(params=["memory", "sql"])
def repository(request, tmp_path):
    if request.param == "memory":
        return InMemoryJobRepository()
    return SqlJobRepository(create_sql_engine(f"sqlite:///{tmp_path / 'jobs.db'}"))


async def test_create_and_get_roundtrip(repository):
    await repository.create(new_job())

    stored = await repository.get("job-1")

    assert stored.status == JobStatus.pending
    assert stored.category == Category.upper_body
    assert stored.garment_description == "blue shirt"
    assert stored.created_at.tzinfo is not None
    assert await repository.get("missing") is None


async def test_duplicate_create_is_rejected(repository):
    await repository.create(new_job())
    with pytest.raises(ValueError):
        await repository.create(new_job())


async def test_mark_submitted_sets_provider_id_once(repository):
    await repository.create(new_job())

    first = await repository.mark_submitted("job-1", "prov-1")
    second = await repository.mark_submitted("job-1", "prov-2")

    assert first.status == JobStatus.submitted
    assert first.provider_job_id == "prov-1"
    assert second is None
    assert (await repository.get_by_provider_job_id("prov-1")).id == "job-1"
    assert await repository.get_by_provider_job_id("prov-2") is None


async def test_terminal_states_are_final(repository):
    await repository.create(new_job())
    await repository.mark_submitted("job-1", "prov-1")

    failed = await repository.transition("job-1", JobStatus.failed, error="timed out")
    revived = await repository.transition("job-1", JobStatus.completed, result_ref="https://cdn.test/x.jpg")

    assert failed.status == JobStatus.failed
    assert failed.error == "timed out"
    assert revived is None
    assert (await repository.get("job-1")).result_ref is None


async def test_pending_cannot_jump_to_completed(repository):
    await repository.create(new_job())
    assert await repository.transition("job-1", JobStatus.completed, result_ref="x") is None


async def test_live_claim_blocks_other_terminal_transitions(repository):
    await repository.create(new_job())
    await repository.mark_submitted("job-1", "prov-1")

    assert await repository.claim("job-1", "token-a", ttl_seconds=60) is not None
    assert await repository.claim("job-1", "token-b", ttl_seconds=60) is None
    assert await repository.transition("job-1", JobStatus.failed, error="x", claim_ttl=60) is None

    done = await repository.transition(
        "job-1", JobStatus.completed, token="token-a", claim_ttl=60, result_ref="https://cdn.test/r.jpg"
    )
    assert done.status == JobStatus.completed
    assert done.completion_claim is None


async def test_expired_claim_can_be_taken_over(repository):
    await repository.create(new_job())
    await repository.mark_submitted("job-1", "prov-1")
    await repository.claim("job-1", "token-a", ttl_seconds=60)

    # a zero ttl treats every existing claim as expired
    assert await repository.claim("job-1", "token-b", ttl_seconds=0) is not None


async def test_release_claim_only_by_holder(repository):
    await repository.create(new_job())
    await repository.mark_submitted("job-1", "prov-1")
    await repository.claim("job-1", "token-a", ttl_seconds=60)

    await repository.release_claim("job-1", "token-b")
    assert (await repository.get("job-1")).completion_claim == "token-a"

    await repository.release_claim("job-1", "token-a")
    assert (await repository.get("job-1")).completion_claim is None


async def test_concurrent_claims_have_one_winner(repository):
    await repository.create(new_job())
    await repository.mark_submitted("job-1", "prov-1")

    results = await asyncio.gather(
        *(repository.claim("job-1", f"token-{i}", ttl_seconds=60) for i in range(5))
    )

    assert sum(r is not None for r in results) == 1


async def test_history_records_every_transition(repository):
    await repository.create(new_job())
    await repository.mark_submitted("job-1", "prov-1")
    await repository.transition("job-1", JobStatus.completed, result_ref="https://cdn.test/r.jpg", reason="webhook")

    history = await repository.history("job-1")

    assert [(h.from_status, h.to_status) for h in history] == [
        (None, JobStatus.pending),
        (JobStatus.pending, JobStatus.submitted),
        (JobStatus.submitted, JobStatus.completed),
    ]
    assert history[-1].reason == "webhook"
    assert history[0].at <= history[-1].at


async def test_list_filters_by_status_and_scope(repository):
    await repository.create(new_job("a", scope="shop"))
    await repository.create(new_job("b", scope="shop"))
    await repository.create(new_job("c", scope="other"))
    await repository.mark_submitted("b", "prov-b")

    assert [j.id for j in await repository.list(owner_scope="shop")] == ["a", "b"]
    assert [j.id for j in await repository.list(status=JobStatus.submitted)] == ["b"]
    assert [j.id for j in await repository.list(status=JobStatus.pending, owner_scope="other")] == ["c"]


async def test_sql_repository_survives_restart(tmp_path):
    url = f"sqlite:///{tmp_path / 'jobs.db'}"
    first = SqlJobRepository(create_sql_engine(url))
    await first.create(new_job())
    await first.mark_submitted("job-1", "prov-1")

    second = SqlJobRepository(create_sql_engine(url))
    job = await second.get("job-1")

    assert job.status == JobStatus.submitted
    assert job.provider_job_id == "prov-1"
    assert len(await second.history("job-1")) == 2


async def test_inmemory_dump_dir_writes_snapshots(tmp_path):
    repo = InMemoryJobRepository(dump_dir=str(tmp_path / "dump"))
    await repo.create(new_job())

    assert (tmp_path / "dump" / "job-1.json").exists()
