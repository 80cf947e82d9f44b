# blockget/jobs.py
"""
Bounded pool for running whole-file transfers side by side.

Each invocation builds its own pool; ``wait`` is the completion barrier.
A failing job is recorded and logged, never propagated to its siblings.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    name: str
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class JobPool:
    """Runs at most ``max_jobs`` submitted callables at a time."""

    def __init__(self, max_jobs: int = 4):
        if max_jobs < 1:
            raise ValueError(f"max_jobs must be >= 1, got {max_jobs}")
        self.max_jobs = max_jobs
        self._executor = ThreadPoolExecutor(max_workers=max_jobs, thread_name_prefix="blockget-job")
        self._futures: List[Future] = []
        self._results: List[JobResult] = []
        self._lock = threading.Lock()

    def __enter__(self) -> "JobPool":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def submit(self, name: str, fn: Callable[[], Any]) -> Future:
        """Queue ``fn``; it starts as soon as a slot is free."""
        future = self._executor.submit(self._run, name, fn)
        with self._lock:
            self._futures.append(future)
        return future

    def _run(self, name: str, fn: Callable[[], Any]) -> JobResult:
        try:
            outcome = JobResult(name, result=fn())
        except Exception as e:
            logger.error("%s failed: %s: %s", name, type(e).__name__, e)
            outcome = JobResult(name, error=e)
        with self._lock:
            self._results.append(outcome)
        return outcome

    def wait(self) -> List[JobResult]:
        """Block until every submitted job has finished; results are in submission order."""
        with self._lock:
            futures = list(self._futures)
        wait(futures)
        return [future.result() for future in futures]

    def close(self):
        self._executor.shutdown(wait=True)

    @property
    def failures(self) -> List[JobResult]:
        with self._lock:
            return [r for r in self._results if not r.ok]
