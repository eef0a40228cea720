"""Per-query deadlines and deadline-bounded fan-out."""

from __future__ import annotations

import time
from concurrent.futures import Executor, Future, wait
from threading import Lock
from typing import Callable, Iterable, List, Optional, TypeVar

from services.errors import QueryTimeout

T = TypeVar("T")
R = TypeVar("R")


class Deadline:
    """Absolute point in time after which a query must give up."""

    def __init__(
        self,
        seconds: Optional[float],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self.expires_at = None if seconds is None else clock() + seconds

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self.expires_at is not None and self._clock() >= self.expires_at

    def check(self) -> None:
        if self.expired():
            raise QueryTimeout("Query deadline exceeded.")


def run_parallel(
    executor: Optional[Executor],
    fn: Callable[[T], R],
    items: Iterable[T],
    deadline: Deadline,
    max_workers: Optional[int] = None,
) -> List[R]:
    """Apply ``fn`` to every item, preserving order, within ``deadline``.

    The calling thread works through the batch itself and borrows at most
    ``max_workers`` threads from ``executor``, so a busy pool slows a query
    down but never stalls it. Borrowed threads that have not started once
    the batch is drained are cancelled.

    Runners stop taking items after the first failure or once the deadline
    passes. The failure is re-raised, or :class:`QueryTimeout` raised when
    items were left unfinished; partial results are discarded. A store call
    already in flight is not interrupted.
    """
    batch = list(items)
    results: List[Optional[R]] = [None] * len(batch)
    indexes = iter(range(len(batch)))
    failures: List[Exception] = []
    completed = 0
    lock = Lock()

    def drain() -> None:
        nonlocal completed
        while True:
            with lock:
                if failures or deadline.expired():
                    return
                index = next(indexes, None)
            if index is None:
                return
            try:
                value = fn(batch[index])
            except Exception as exc:
                with lock:
                    failures.append(exc)
                return
            with lock:
                results[index] = value
                completed += 1

    helpers: List[Future] = []
    if executor is not None and len(batch) > 1:
        count = len(batch) - 1
        if max_workers is not None:
            count = min(count, max_workers)
        helpers = [executor.submit(drain) for _ in range(count)]

    drain()
    for helper in helpers:
        helper.cancel()
    wait(helpers, timeout=deadline.remaining())

    with lock:
        if failures:
            raise failures[0]
        if completed < len(batch):
            raise QueryTimeout("Query deadline exceeded.")
        return list(results)  # type: ignore[arg-type]
