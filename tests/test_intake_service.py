import pytest

from common.errors import InvalidRequest, NotFound, QueueUnavailable, StoreUnavailable
from dispatch.models import DispatchMessage
from intake.service import IntakeService
from jobs.models import JobStatus
from jobs.store import InMemoryJobStore


class UnavailableStore(InMemoryJobStore):
    async def create(self, job):
        raise StoreUnavailable("connection refused")


@pytest.fixture
def service(store, queue):
    return IntakeService(store, queue)


@pytest.mark.anyio
async def test_submit_records_job_then_dispatches(service, store, queue):
    job_id = await service.submit("https://example.com")

    job = await service.get_status(job_id)
    assert job.id == job_id
    assert job.status == JobStatus.SUBMITTED
    assert job.source_uri == "https://example.com"
    assert queue.sent == [DispatchMessage(id=job_id, uri="https://example.com")]


@pytest.mark.anyio
async def test_identical_submissions_create_independent_jobs(service, store, queue):
    first = await service.submit("https://example.com")
    second = await service.submit("https://example.com")

    assert first != second
    assert len(store) == 2
    assert [m.id for m in queue.sent] == [first, second]


@pytest.mark.anyio
@pytest.mark.parametrize("uri", [None, "", 42])
async def test_submit_rejects_missing_uri(service, store, queue, uri):
    with pytest.raises(InvalidRequest):
        await service.submit(uri)

    assert len(store) == 0
    assert queue.sent == []


@pytest.mark.anyio
async def test_unknown_job_is_not_found(service):
    with pytest.raises(NotFound):
        await service.get_status("does-not-exist")


@pytest.mark.anyio
@pytest.mark.parametrize("job_id", ["", "a b", "x" * 129, "../etc/passwd", "abc\n"])
async def test_malformed_job_id_is_invalid(service, job_id):
    with pytest.raises(InvalidRequest):
        await service.get_status(job_id)


@pytest.mark.anyio
async def test_store_outage_sends_nothing(queue):
    service = IntakeService(UnavailableStore(), queue)

    with pytest.raises(StoreUnavailable):
        await service.submit("https://example.com")

    assert queue.sent == []


@pytest.mark.anyio
async def test_queue_outage_leaves_orphan_submitted_job(service, store, queue):
    await queue.disconnect()

    with pytest.raises(QueueUnavailable) as info:
        await service.submit("https://example.com")

    orphan = await store.get(info.value.job_id)
    assert orphan is not None
    assert orphan.status == JobStatus.SUBMITTED


@pytest.mark.anyio
async def test_any_non_empty_uri_is_accepted(service, queue):
    job_id = await service.submit(" ")

    assert (await service.get_status(job_id)).source_uri == " "
    assert [m.id for m in queue.sent] == [job_id]
