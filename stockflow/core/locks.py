"""
Keyed critical sections and bounded retry

Ledger keys and document ids each get their own reentrant lock; disjoint
keys never contend. Waiting longer than the timeout raises the manager's
busy error, which callers retry with exponential backoff.
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Hashable, Iterator, List, Optional, Tuple, Type, TypeVar

from .exceptions import StockflowException

logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyLockManager:
    """
    Hands out one reentrant lock per key

    An entry lives only while some thread holds or waits for its key.
    """

    def __init__(self, name: str, timeout: float, busy_error: Type[StockflowException]):
        self.name = name
        self.timeout = timeout
        self.busy_error = busy_error
        self._locks: Dict[Hashable, List] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: Hashable) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Iterator[None]:
        """Enter the critical section for key or raise the busy error"""
        wait = self.timeout if timeout is None else timeout
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=wait):
                raise self.busy_error(
                    f"{self.name} lock for {key} not acquired within {wait}s",
                    key=str(key),
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)


def call_with_retry(
    fn: Callable[[], T],
    budget: int,
    backoff: float,
    max_backoff: float,
    retry_on: Tuple[Type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying retryable stockflow errors with exponential backoff

    Args:
        fn: Zero-argument callable
        budget: Number of retries after the first attempt
        backoff: Base delay in seconds, doubled per attempt
        max_backoff: Upper bound on a single delay
        retry_on: Extra exception types to retry besides ``retryable`` ones
    """
    attempt = 0
    while True:
        try:
            return fn()
        except StockflowException as exc:
            if not (exc.retryable or isinstance(exc, retry_on)):
                raise
            attempt += 1
            if attempt > budget:
                logger.warning(f"Retry budget of {budget} exhausted: {exc.message}")
                raise
            delay = min(backoff * (2 ** (attempt - 1)), max_backoff)
            logger.warning(f"{exc.code}, retry {attempt}/{budget} in {delay:.3f}s")
            sleep(delay)
