import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, Future
from typing import Any, Callable, Optional

from .constants import DEFAULT_STORAGE_WORKERS

logger = logging.getLogger(__name__)


class StorageWorkerPool:
    """Wrap a blocking storage adapter (like WebDavStorage) and run its blocking
    operations in a ThreadPoolExecutor with a semaphore to throttle concurrent
    storage calls.

    `async_*` methods await the worker thread without blocking the event loop.
    """

    def __init__(self, storage_adapter: Any, max_workers: int = DEFAULT_STORAGE_WORKERS, max_concurrent: Optional[int] = None):
        self._storage = storage_adapter
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="storage")
        self._max_concurrent = max_concurrent if max_concurrent is not None else max_workers
        self._semaphore = threading.BoundedSemaphore(self._max_concurrent)

    @property
    def base_url(self) -> Optional[str]:
        return getattr(self._storage, 'base_url', None)

    def _run_guarded(self, fn: Callable, *args, **kwargs):
        self._semaphore.acquire()
        try:
            return fn(*args, **kwargs)
        finally:
            self._semaphore.release()

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        """Submit a storage call to the worker pool and return a Future."""
        return self._executor.submit(self._run_guarded, fn, *args, **kwargs)

    async def async_run(self, fn: Callable, *args, timeout: Optional[float] = None, **kwargs):
        """Submit a blocking call and await its result from asyncio."""
        fut = self.submit(fn, *args, **kwargs)
        wrapped = asyncio.wrap_future(fut, loop=asyncio.get_running_loop())
        if timeout is not None:
            return await asyncio.wait_for(wrapped, timeout=timeout)
        return await wrapped

    async def async_upload_fileobj(self, *args, timeout: Optional[float] = None, **kwargs):
        return await self.async_run(self._storage.upload_fileobj, *args, timeout=timeout, **kwargs)

    def shutdown(self, wait: bool = True):
        try:
            self._executor.shutdown(wait=wait)
        except Exception:
            logger.exception("Error shutting down storage worker pool")
