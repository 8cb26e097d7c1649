"""
The RateLimitingQueue hands keys to worker threads. A key is never handed to
two workers at once: a key added while it is being processed is held until
the worker calls done() and then queued again. Delayed adds wait in a heap that
a single timer thread drains.
"""

# Standard
from collections import deque
from datetime import timedelta
from heapq import heappop, heappush
from typing import Callable, Dict, Hashable, Optional
import itertools
import threading
import time

# First Party
import alog

# Local
from ..rate_limiter import Outcome, RateLimiter

log = alog.use_channel("WKQUE")


class RateLimitingQueue:  # pylint: disable=too-many-instance-attributes
    """Single-flight work queue with delayed and rate limited adds"""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        clock: Callable[[], float] = time.monotonic,
        name: str = "work_queue",
    ):
        self.rate_limiter = rate_limiter
        self.name = name
        self._clock = clock

        # Ready keys in order, the keys waiting to be processed, and the keys
        # being processed
        self._queue = deque()
        self._dirty = set()
        self._processing = set()
        self._cond = threading.Condition()
        self._shutting_down = False

        # Delayed adds: heap of (ready_at, seq, key) plus the earliest ready
        # time per key. Heap entries whose time no longer matches are stale.
        self._waiting_heap = []
        self._waiting: Dict[Hashable, float] = {}
        self._seq = itertools.count()
        self._waiting_cond = threading.Condition()
        self._timer_thread = threading.Thread(
            target=self._run_timer, name=f"{name}_timer", daemon=True
        )
        self._timer_thread.start()

    ## Queue ###################################################################

    def add(self, key: Hashable):
        """Mark the key as needing processing"""
        with self._cond:
            if self._shutting_down:
                return
            if key in self._dirty:
                log.debug3("[%s] already queued", key)
                return
            self._dirty.add(key)
            if key in self._processing:
                log.debug3("[%s] is processing, holding until done", key)
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Block until a key is ready and mark it as processing

        Args:
            timeout:  Optional[float]
                Seconds to wait for a key, or None to wait forever

        Returns:
            key:  Optional[Hashable]
                The key, or None on timeout or shutdown
        """
        with self._cond:
            if not self._cond.wait_for(
                lambda: self._queue or self._shutting_down, timeout=timeout
            ):
                return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: Hashable):
        """Mark processing of the key as finished"""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self):
        """Stop handing out keys and wake every waiting worker"""
        log.debug("Shutting down %s", self.name)
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        with self._waiting_cond:
            self._waiting_cond.notify_all()
        self._timer_thread.join()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self):
        with self._cond:
            return len(self._queue)

    ## Delays ##################################################################

    def add_after(self, key: Hashable, delay: timedelta):
        """Add the key once the delay has passed. If the key is already waiting
        the earlier of the two times wins.
        """
        seconds = delay.total_seconds()
        if seconds <= 0:
            self.add(key)
            return
        ready_at = self._clock() + seconds
        with self._waiting_cond:
            if self.shutting_down:
                return
            current = self._waiting.get(key)
            if current is not None and current <= ready_at:
                log.debug3("[%s] already waiting until an earlier time", key)
                return
            log.debug2("[%s] waiting %.3fs", key, seconds)
            self._waiting[key] = ready_at
            heappush(self._waiting_heap, (ready_at, next(self._seq), key))
            self._waiting_cond.notify()

    def is_waiting(self, key: Hashable) -> bool:
        """Whether the key has a pending delayed add"""
        with self._waiting_cond:
            return key in self._waiting

    def add_rate_limited(self, key: Hashable):
        """Add the key after the rate limiter's delay for it"""
        self.add_after(key, self.rate_limiter.next_delay(key, Outcome.FAILURE))

    def forget(self, key: Hashable):
        """Reset the rate limiter's tracking of the key"""
        self.rate_limiter.next_delay(key, Outcome.SUCCESS)

    def num_requeues(self, key: Hashable) -> int:
        return self.rate_limiter.num_requeues(key)

    ## Implementation ##########################################################

    def _run_timer(self):
        """Move delayed keys onto the queue as they become ready"""
        while True:
            ready = []
            with self._waiting_cond:
                # Checked under the lock so a shutdown notify is never missed
                if self.shutting_down:
                    return
                now = self._clock()
                while self._waiting_heap and self._waiting_heap[0][0] <= now:
                    ready_at, _, key = heappop(self._waiting_heap)
                    if self._waiting.get(key) == ready_at:
                        del self._waiting[key]
                        ready.append(key)
                if not ready:
                    timeout = None
                    if self._waiting_heap:
                        timeout = max(self._waiting_heap[0][0] - now, 0.0)
                    self._waiting_cond.wait(timeout=timeout)
            for key in ready:
                log.debug2("[%s] done waiting", key)
                self.add(key)
