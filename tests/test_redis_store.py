import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis

import jobs.redis_store as redis_store_module
from common.errors import JobAlreadyExists, StoreUnavailable, TransitionRejected
from jobs.models import Job, JobStatus
from jobs.redis_store import RedisJobStore


@pytest.fixture
def redis_server(monkeypatch):
    """
    In-process redis (with Lua) standing in for the server behind
    ``redis.from_url``.
    """
    server = FakeServer()

    def _from_url(url, **kwargs):
        return FakeRedis(server=server, **kwargs)

    monkeypatch.setattr(redis_store_module.redis, "from_url", _from_url)
    return server


@pytest.fixture
async def redis_store(redis_server):
    store = RedisJobStore("redis://fake:6379/0", table="test")
    async with store:
        yield store


@pytest.mark.anyio
async def test_round_trip_and_lifecycle(redis_store):
    job = Job.submitted("https://example.com")
    await redis_store.create(job)
    assert await redis_store.get(job.id) == job

    await redis_store.transition(job.id, JobStatus.SUBMITTED, JobStatus.PROCESSING)
    done = await redis_store.transition(
        job.id, JobStatus.PROCESSING, JobStatus.COMPLETED, result_uri="s3://bucket/x.png",
    )

    assert done.status == JobStatus.COMPLETED
    assert done.result_uri == "s3://bucket/x.png"
    assert done.source_uri == "https://example.com"
    assert await redis_store.get(job.id) == done


@pytest.mark.anyio
async def test_records_live_under_table_namespace(redis_store, redis_server):
    job = Job.submitted("https://example.com", job_id="J1")
    await redis_store.create(job)

    raw = FakeRedis(server=redis_server, decode_responses=True)
    assert await raw.hgetall("test:J1") == {
        "id": "J1",
        "status": "submitted",
        "sourceUri": "https://example.com",
    }


@pytest.mark.anyio
async def test_create_is_insert_only(redis_store):
    job = Job.submitted("https://a.example", job_id="J1")
    await redis_store.create(job)

    with pytest.raises(JobAlreadyExists):
        await redis_store.create(Job.submitted("https://b.example", job_id="J1"))

    assert (await redis_store.get("J1")).source_uri == "https://a.example"


@pytest.mark.anyio
async def test_conditional_update_rejects_stale_status(redis_store):
    job = Job.submitted("https://example.com")
    await redis_store.create(job)
    await redis_store.transition(job.id, JobStatus.SUBMITTED, JobStatus.PROCESSING)

    with pytest.raises(TransitionRejected) as info:
        await redis_store.transition(job.id, JobStatus.SUBMITTED, JobStatus.PROCESSING)

    assert info.value.actual == "processing"
    assert (await redis_store.get(job.id)).status == JobStatus.PROCESSING


@pytest.mark.anyio
async def test_failed_records_error(redis_store):
    job = Job.submitted("https://example.com")
    await redis_store.create(job)
    await redis_store.transition(job.id, JobStatus.SUBMITTED, JobStatus.PROCESSING)

    failed = await redis_store.transition(
        job.id, JobStatus.PROCESSING, JobStatus.FAILED, error="TimeoutError: too slow",
    )

    assert failed.status == JobStatus.FAILED
    assert failed.error == "TimeoutError: too slow"
    assert failed.result_uri is None

    with pytest.raises(TransitionRejected) as info:
        await redis_store.transition(
            job.id, JobStatus.PROCESSING, JobStatus.COMPLETED, result_uri="s3://bucket/x.png",
        )
    assert info.value.actual == "failed"


@pytest.mark.anyio
async def test_missing_job(redis_store):
    assert await redis_store.get("does-not-exist") is None

    with pytest.raises(TransitionRejected) as info:
        await redis_store.transition("does-not-exist", JobStatus.SUBMITTED, JobStatus.PROCESSING)

    assert info.value.actual is None
    assert await redis_store.get("does-not-exist") is None


@pytest.mark.anyio
async def test_unreachable_server_is_store_unavailable(redis_store, redis_server):
    redis_server.connected = False

    with pytest.raises(StoreUnavailable):
        await redis_store.get("J1")

    with pytest.raises(StoreUnavailable):
        await redis_store.create(Job.submitted("https://example.com"))


@pytest.mark.anyio
async def test_connect_fails_when_server_is_down(redis_server):
    redis_server.connected = False

    with pytest.raises(StoreUnavailable):
        await RedisJobStore("redis://fake:6379/0").connect()
