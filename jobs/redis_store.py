from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from common.config import REDIS_URL, TABLE
from common.errors import (
    JobAlreadyExists,
    StoreUnavailable,
    TransitionRejected,
)
from common.logger import get_logger
from jobs.models import Job, JobStatus
from jobs.store import JobStore, check_transition

# KEYS[1] = job key, ARGV = flat field/value pairs
_CREATE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
redis.call('HSET', KEYS[1], unpack(ARGV))
return 1
"""

# KEYS[1] = job key, ARGV[1] = expected status, ARGV[2..] = field/value pairs.
# Returns {1, <hgetall...>} on success or {0, <current status>} on mismatch.
_TRANSITION_SCRIPT = """
local current = redis.call('HGET', KEYS[1], 'status')
if current ~= ARGV[1] then
    return {0, current or ''}
end
redis.call('HSET', KEYS[1], unpack(ARGV, 2))
local out = {1}
for _, value in ipairs(redis.call('HGETALL', KEYS[1])) do
    table.insert(out, value)
end
return out
"""


def _flatten(fields: dict[str, str]) -> list[str]:
    flat: list[str] = []
    for key, value in fields.items():
        flat.extend((key, value))
    return flat


class RedisJobStore(JobStore):
    """Job records as redis hashes under ``<table>:<job id>``.

    Create and transition run as Lua scripts, so the existence / status check
    and the write are a single atomic step on the server.
    """

    def __init__(self, url: str = REDIS_URL, table: str = TABLE) -> None:
        self._logger = get_logger(__name__)
        self._url = url
        self._table = table
        self._redis: Optional[redis.Redis] = None
        self._create = None
        self._transition = None

    async def connect(self) -> None:
        self._redis = redis.from_url(self._url, decode_responses=True)
        self._create = self._redis.register_script(_CREATE_SCRIPT)
        self._transition = self._redis.register_script(_TRANSITION_SCRIPT)

        try:
            await self._redis.ping()
        except RedisError as exc:
            raise StoreUnavailable(f"Cannot reach job store: {exc}") from exc

        self._logger.info("Connected to job store, table '%s'", self._table)

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _key(self, job_id: str) -> str:
        return f"{self._table}:{job_id}"

    def _ensure_connected(self) -> redis.Redis:
        if self._redis is None:
            raise StoreUnavailable("Not connected to the job store")
        return self._redis

    async def create(self, job: Job) -> None:
        self._ensure_connected()
        try:
            created = await self._create(
                keys=[self._key(job.id)],
                args=_flatten(job.to_record()),
            )
        except RedisError as exc:
            raise StoreUnavailable(f"Job {job.id}: create failed: {exc}") from exc

        if not created:
            raise JobAlreadyExists(job.id)

    async def get(self, job_id: str) -> Optional[Job]:
        client = self._ensure_connected()
        try:
            record = await client.hgetall(self._key(job_id))
        except RedisError as exc:
            raise StoreUnavailable(f"Job {job_id}: read failed: {exc}") from exc

        if not record:
            return None
        return Job.from_record(record)

    async def transition(
            self,
            job_id: str,
            expected: JobStatus,
            target: JobStatus,
            result_uri: Optional[str] = None,
            error: Optional[str] = None,
    ) -> Job:
        check_transition(expected, target, result_uri, error)
        self._ensure_connected()

        fields = {"status": target.value}
        if result_uri is not None:
            fields["resultUri"] = result_uri
        if error is not None:
            fields["error"] = error

        try:
            result = await self._transition(
                keys=[self._key(job_id)],
                args=[expected.value, *_flatten(fields)],
            )
        except RedisError as exc:
            raise StoreUnavailable(
                f"Job {job_id}: transition to '{target.value}' failed: {exc}"
            ) from exc

        if int(result[0]) != 1:
            raise TransitionRejected(job_id, expected.value, result[1] or None)

        values = result[1:]
        return Job.from_record(dict(zip(values[::2], values[1::2])))
