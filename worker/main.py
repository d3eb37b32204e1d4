import asyncio
import importlib
import signal
import sys
from typing import Optional

from common.config import CAPTURER, QUEUE_URL
from common.logger import get_logger
from dispatch.rabbit import RabbitMQClient
from jobs.redis_store import RedisJobStore
from storage.filesystem import FilesystemArtifactStore
from worker.service import Capturer, ScreenshotWorker


def load_capturer(import_string: Optional[str]) -> Capturer:
    """Resolve ``package.module:attribute`` to a Capturer.

    The attribute may be a Capturer instance or a callable (class or factory)
    returning one.
    """
    if not import_string or ":" not in import_string:
        raise ValueError(
            f"CAPTURER must look like 'package.module:attribute', got {import_string!r}"
        )

    module_name, _, attr = import_string.partition(":")
    target = getattr(importlib.import_module(module_name), attr)

    capturer = target if isinstance(target, Capturer) else target()
    if not isinstance(capturer, Capturer):
        raise TypeError(f"{import_string} did not produce a Capturer")

    return capturer


async def entrypoint() -> None:
    logger = get_logger(__name__)
    capturer = load_capturer(CAPTURER)
    queue = await RabbitMQClient.wait_for_broker(QUEUE_URL)

    service = ScreenshotWorker(
        store=RedisJobStore(),
        queue=queue,
        capturer=capturer,
        artifacts=FilesystemArtifactStore(),
    )
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _on_signal() -> None:
        stop_event.set()

    if sys.platform != "win32":
        # Unix
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _on_signal)
    else:
        # Windows
        def handler(signum, frame):
            loop.call_soon_threadsafe(stop_event.set)

        signal.signal(signal.SIGINT, handler)

        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, handler)

    async with service:
        await stop_event.wait()

    logger.info("Worker shut down")


if __name__ == "__main__":
    asyncio.run(entrypoint())
