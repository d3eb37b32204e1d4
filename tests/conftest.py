import os
import tempfile

# Keep file logging out of /runtime while testing
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "screenshot-jobs-logs"))

import pytest
from httpx import AsyncClient, ASGITransport

from dispatch.queue import InMemoryWorkQueue
from intake.server import Server
from jobs.store import InMemoryJobStore
from storage.filesystem import FilesystemArtifactStore
from worker.service import Capturer, ScreenshotWorker

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeCapturer(Capturer):
    """Returns canned bytes, failing the first ``failures`` calls."""

    def __init__(self, image: bytes = PNG_BYTES, failures: int = 0) -> None:
        self.image = image
        self.failures = failures
        self.calls: list[str] = []
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def capture(self, uri: str) -> bytes:
        self.calls.append(uri)
        if self.failures:
            self.failures -= 1
            raise RuntimeError("page crashed")
        return self.image


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def queue():
    return InMemoryWorkQueue()


@pytest.fixture
def server(store, queue):
    return Server(store=store, queue=queue)


@pytest.fixture
async def client(server):
    """
    HTTP client over the ASGI app, no real server and no lifespan: the
    in-memory store and queue need no connection.
    """
    transport = ASGITransport(app=server.app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def capturer():
    return FakeCapturer()


@pytest.fixture
def artifacts(tmp_path):
    return FilesystemArtifactStore(str(tmp_path / "artifacts"))


@pytest.fixture
def make_worker(store, queue, artifacts):
    def _make(capturer: Capturer, attempts: int = 3) -> ScreenshotWorker:
        return ScreenshotWorker(
            store=store,
            queue=queue,
            capturer=capturer,
            artifacts=artifacts,
            attempts=attempts,
            retry_delay=0,
        )

    return _make


@pytest.fixture
async def worker(make_worker, capturer):
    service = make_worker(capturer)
    async with service:
        yield service
