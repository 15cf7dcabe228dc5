"""
Parallel Executor Module
Bounded fan-out / fan-in of independent work items over a thread or process pool
"""

import logging
import multiprocessing as mp
import threading
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Any, Callable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class BatchError(Exception):
    """Raised when any work item in a batch fails; the whole batch is rejected."""

    def __init__(self, item: Any, error: BaseException, completed: int = 0, total: int = 0):
        super().__init__(f"Work item failed ({completed}/{total} completed): {error!r}")
        self.item = item
        self.error = error
        self.completed = completed
        self.total = total


class ParallelExecutor:
    """
    Runs a pure function over a list of items with at most `max_workers`
    in flight. The pool is created lazily and reused across batches.

    Work functions must be module-level callables (or functools.partial of
    one) so the process backend can pickle them.
    """

    def __init__(self, max_workers: Optional[int] = None, backend: str = 'process'):
        if backend not in ('process', 'thread'):
            raise ValueError(f"Unknown executor backend: {backend}")
        self.max_workers = max_workers or mp.cpu_count()
        self.backend = backend
        self._pool: Optional[Executor] = None
        self._lock = threading.Lock()

    def _get_pool(self) -> Executor:
        with self._lock:
            if self._pool is None:
                if self.backend == 'process':
                    self._pool = ProcessPoolExecutor(max_workers=self.max_workers)
                else:
                    self._pool = ThreadPoolExecutor(max_workers=self.max_workers,
                                                    thread_name_prefix='nest-worker')
                logger.info(f"[EXECUTOR] Started {self.backend} pool with {self.max_workers} workers")
            return self._pool

    def map(self, func: Callable[[Any], Any], items: Sequence[Any],
            progress_callback: Optional[Callable[[int, int], None]] = None) -> List[Tuple[Any, Any]]:
        """
        Apply `func` to every item and return (item, result) pairs in input order.

        `progress_callback(completed, total)` is called from the calling thread
        as items finish. Raises BatchError for the first failing item; items
        not yet started are cancelled.
        """
        items = list(items)
        total = len(items)
        if total == 0:
            return []

        pool = self._get_pool()
        futures = {pool.submit(func, item): index for index, item in enumerate(items)}
        results: List[Any] = [None] * total
        completed = 0

        for future in as_completed(futures):
            index = futures[future]
            error = future.exception()
            if error is not None:
                for other in futures:
                    other.cancel()
                logger.error(f"[EXECUTOR] Item {index} failed: {error!r}")
                raise BatchError(items[index], error, completed, total) from error
            results[index] = future.result()
            completed += 1
            if progress_callback:
                progress_callback(completed, total)

        logger.debug(f"[EXECUTOR] Batch of {total} items completed")
        return list(zip(items, results))

    def shutdown(self, wait_for_pending: bool = True):
        with self._lock:
            if self._pool is not None:
                self._pool.shutdown(wait=wait_for_pending, cancel_futures=not wait_for_pending)
                self._pool = None
                logger.info(f"[EXECUTOR] {self.backend} pool shut down")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False
