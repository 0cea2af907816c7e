"""Deduplicating, rate-limited work queue for controller keys."""

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Hashable, List, Optional, Set, Tuple

from .config import (
    RATE_LIMIT_BASE_DELAY,
    RATE_LIMIT_MAX_DELAY,
    RATE_LIMIT_QPS,
    RATE_LIMIT_BURST,
)

logger = logging.getLogger(__name__)


class ItemExponentialFailureRateLimiter:
    """
    Per-item exponential backoff.

    Each call to ``when`` doubles the delay for that item, starting at
    ``base_delay`` and capped at ``max_delay``. ``forget`` resets the item.
    """

    def __init__(self, base_delay: float = RATE_LIMIT_BASE_DELAY, max_delay: float = RATE_LIMIT_MAX_DELAY):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1

        # 2**64 * base_delay is already far past any sane cap
        if exp >= 64:
            return self.max_delay
        return min(self.base_delay * (2 ** exp), self.max_delay)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)


class BucketRateLimiter:
    """
    Overall token bucket shared by every item.

    Tokens refill at ``qps`` per second up to ``burst``. A reservation made
    while the bucket is empty is delayed until its token would be available.
    """

    def __init__(
        self,
        qps: float = RATE_LIMIT_QPS,
        burst: int = RATE_LIMIT_BURST,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._last = now
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.qps)
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def num_requeues(self, item: Hashable) -> int:
        return 0

    def forget(self, item: Hashable) -> None:
        pass


class MaxOfRateLimiter:
    """Combines limiters, using the longest delay any of them asks for."""

    def __init__(self, *limiters):
        self._limiters = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self._limiters)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self._limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self._limiters:
            limiter.forget(item)


def default_controller_rate_limiter() -> MaxOfRateLimiter:
    """Per-item exponential backoff combined with an overall token bucket."""
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(RATE_LIMIT_BASE_DELAY, RATE_LIMIT_MAX_DELAY),
        BucketRateLimiter(RATE_LIMIT_QPS, RATE_LIMIT_BURST),
    )


class WorkQueue:
    """
    FIFO queue with per-item deduplication and single-flight processing.

    Every item is in at most one of three states:

    * queued: visible to ``get`` (also tracked in ``_dirty``)
    * processing: handed out by ``get`` and not yet ``done``
    * processing and dirty: added again while processing; it is queued
      the moment ``done`` is called
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._shutting_down = False
        self._cond = threading.Condition()

    def add(self, item: Hashable) -> None:
        """
        Mark an item as needing processing.

        Args:
            item: Key to add. Ignored if already queued, or after shutdown.
        """
        with self._cond:
            if self._shutting_down:
                return
            if item in self._dirty:
                return

            self._dirty.add(item)
            if item in self._processing:
                return

            self._queue.append(item)
            self._cond.notify()

    def get(self) -> Tuple[Optional[Hashable], bool]:
        """
        Block until an item is available.

        Returns:
            (item, shutting_down). ``shutting_down`` is True, with a None
            item, once the queue is shut down and drained.
        """
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()

            if not self._queue:
                return None, True

            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Hashable) -> None:
        """Release an item handed out by ``get``, re-queueing it if it was re-added."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            if self._shutting_down:
                return
            logger.debug(f"Shutting down work queue {self.name!r}")
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)


class DelayingQueue(WorkQueue):
    """Work queue that can hold items back until a delay has elapsed."""

    def __init__(self, name: str = "", clock: Callable[[], float] = time.monotonic):
        super().__init__(name)
        self._clock = clock
        self._heap: List[Tuple[float, int, Hashable]] = []
        # item -> earliest ready time; heap entries not matching are stale
        self._waiting: Dict[Hashable, float] = {}
        self._sequence = itertools.count()
        self._delay_cond = threading.Condition()
        self._stopped = False

        self._waiting_thread = threading.Thread(
            target=self._waiting_loop,
            name=f"{name or 'workqueue'}-delay",
            daemon=True,
        )
        self._waiting_thread.start()

    def add_after(self, item: Hashable, delay: float) -> None:
        """
        Add an item once ``delay`` seconds have passed.

        If the item is already waiting, the earlier of the two ready times wins.
        """
        if self.shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        with self._delay_cond:
            ready_at = self._clock() + delay
            current = self._waiting.get(item)
            if current is not None and current <= ready_at:
                return
            self._waiting[item] = ready_at
            heapq.heappush(self._heap, (ready_at, next(self._sequence), item))
            self._delay_cond.notify()

    def _waiting_loop(self) -> None:
        with self._delay_cond:
            while not self._stopped:
                now = self._clock()
                while self._heap and self._heap[0][0] <= now:
                    ready_at, _, item = heapq.heappop(self._heap)
                    if self._waiting.get(item) != ready_at:
                        continue
                    del self._waiting[item]
                    self.add(item)

                timeout = self._heap[0][0] - now if self._heap else None
                self._delay_cond.wait(timeout)

    def shut_down(self) -> None:
        with self._delay_cond:
            self._stopped = True
            self._delay_cond.notify_all()
        super().shut_down()


class RateLimitingQueue(DelayingQueue):
    """Delaying queue whose re-adds are spaced out by a rate limiter."""

    def __init__(self, rate_limiter=None, name: str = "", clock: Callable[[], float] = time.monotonic):
        super().__init__(name=name, clock=clock)
        self.rate_limiter = rate_limiter or default_controller_rate_limiter()

    def add_rate_limited(self, item: Hashable) -> None:
        """Add an item after the rate limiter says it is ok."""
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: Hashable) -> None:
        """Stop tracking backoff for an item; its next delay starts from the base."""
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)
