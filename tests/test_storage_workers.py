import asyncio
import threading
import time

import pytest

from identity_finder.storage_workers import StorageWorkerPool


class RecordingStorage:
    base_url = "https://dav.example.com/files"

    def __init__(self, delay=0.0, fail_exc=None):
        self.delay = delay
        self.fail_exc = fail_exc
        self.uploads = []
        self.threads = set()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def upload_fileobj(self, path, data, overwrite=True):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.threads.add(threading.current_thread().name)
            if self.delay:
                time.sleep(self.delay)
            if self.fail_exc is not None:
                raise self.fail_exc
            self.uploads.append((path, data, overwrite))
            return path
        finally:
            with self._lock:
                self.active -= 1


def test_upload_runs_on_worker_thread():
    storage = RecordingStorage()
    pool = StorageWorkerPool(storage, max_workers=2)
    try:
        assert asyncio.run(pool.async_upload_fileobj("a/b.png", b"x")) == "a/b.png"
        assert storage.uploads == [("a/b.png", b"x", True)]
        assert all(name.startswith("storage") for name in storage.threads)
    finally:
        pool.shutdown()


def test_async_upload_returns_result():
    storage = RecordingStorage()
    pool = StorageWorkerPool(storage, max_workers=2)
    try:
        result = asyncio.run(pool.async_upload_fileobj("a/c.pdf", b"%PDF", overwrite=False))
        assert result == "a/c.pdf"
        assert storage.uploads == [("a/c.pdf", b"%PDF", False)]
    finally:
        pool.shutdown()


def test_async_upload_propagates_exceptions():
    storage = RecordingStorage(fail_exc=IOError("dav down"))
    pool = StorageWorkerPool(storage, max_workers=1)
    try:
        with pytest.raises(IOError):
            asyncio.run(pool.async_upload_fileobj("a/d.png", b"x"))
    finally:
        pool.shutdown()


def test_async_run_honours_timeout():
    storage = RecordingStorage(delay=0.5)
    pool = StorageWorkerPool(storage, max_workers=1)
    try:
        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(pool.async_upload_fileobj("slow.png", b"x", timeout=0.05))
    finally:
        pool.shutdown()


def test_semaphore_limits_concurrency():
    storage = RecordingStorage(delay=0.05)
    pool = StorageWorkerPool(storage, max_workers=4, max_concurrent=1)
    try:
        futures = [pool.submit(storage.upload_fileobj, f"f{i}.png", b"x") for i in range(4)]
        for f in futures:
            f.result(timeout=5)
        assert storage.max_active == 1
        assert len(storage.uploads) == 4
    finally:
        pool.shutdown()


def test_base_url_comes_from_adapter():
    pool = StorageWorkerPool(RecordingStorage(), max_workers=1)
    try:
        assert pool.base_url == "https://dav.example.com/files"
    finally:
        pool.shutdown()
    assert StorageWorkerPool(object(), max_workers=1).base_url is None
