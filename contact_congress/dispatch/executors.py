"""
Execution substrates for batch runs.

Both executors hand back ``concurrent.futures.Future`` objects so the
orchestrator can wait on a whole group of jobs the same way whether they
ran inline or on worker threads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable


class JobExecutor(ABC):
    """Runs callables and reports their results through futures."""

    @abstractmethod
    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        ...

    def shutdown(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.shutdown()


class InlineExecutor(JobExecutor):
    """Run each callable immediately in the calling thread."""

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class PooledExecutor(JobExecutor):
    """Run callables on a thread pool."""

    def __init__(self, max_workers: int = 4) -> None:
        self.max_workers = max_workers
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="fill-worker"
        )

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        return self._pool.submit(fn, *args, **kwargs)

    def shutdown(self) -> None:
        self._pool.shutdown(wait=True)


def make_executor(max_workers: int = 1) -> JobExecutor:
    """Inline for a single worker, a thread pool otherwise."""
    if max_workers <= 1:
        return InlineExecutor()
    return PooledExecutor(max_workers=max_workers)
