"""Blocking-call concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> blocking call

boto3 clients are synchronous and Pillow decodes, transforms and encodes on the
calling thread, so the S3 and Rekognition adapters and each image-pipeline step
submit their work here and the event loop keeps serving other requests. A call
that waits longer than ``queue_timeout`` seconds for a slot fails with
TimeoutError, which the API answers with 503.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from imagehandler.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProcessingPool:
    """Bounded thread pool for collaborator I/O and image work."""

    def __init__(self, settings: Settings) -> None:
        self._timeout = settings.queue_timeout
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="imagehandler-io",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object, **kwargs: object) -> T:
        """Run ``func(*args, **kwargs)`` on the pool once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the queue timeout.
        """
        async with self._slot():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, functools.partial(func, *args, **kwargs))

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        self._adjust(queued=1)
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        except TimeoutError:
            logger.warning("No pool slot within %.1fs (%d waiting)", self._timeout, self.queue_depth)
            raise
        finally:
            self._adjust(queued=-1)

        self._adjust(active=1)
        try:
            yield
        finally:
            self._semaphore.release()
            self._adjust(active=-1)

    def _adjust(self, queued: int = 0, active: int = 0) -> None:
        with self._counter_lock:
            self._queue_depth += queued
            self._active_count += active

    @property
    def active_count(self) -> int:
        """Number of calls currently running."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of calls waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
