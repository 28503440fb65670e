from __future__ import annotations

import threading
from collections.abc import Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable


class TranslationQueue:
    """
    Admission control for model calls.

    Up to ``concurrency`` tasks run at the same time; extra tasks wait in FIFO
    order and a finishing task immediately admits the next one. With
    ``concurrency=1`` tasks run strictly one after another.

    A task is a zero-argument callable. If it returns a generator/iterator the
    worker drains it to a list, so the task is fully complete before its slot
    is released. Failures are stored in the returned Future and never stall
    the queue.
    """

    def __init__(self, concurrency: int = 4):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.concurrency = concurrency
        self._executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="translate")
        self._lock = threading.Lock()
        self._active = 0
        self.peak_active = 0

    def __enter__(self) -> "TranslationQueue":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def _run(self, task: Callable[[], Any]) -> Any:
        with self._lock:
            self._active += 1
            self.peak_active = max(self.peak_active, self._active)
        try:
            result = task()
            if isinstance(result, Iterator):
                result = list(result)
            return result
        finally:
            with self._lock:
                self._active -= 1

    def add(self, task: Callable[[], Any]) -> Future:
        return self._executor.submit(self._run, task)

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=cancel_pending)
