"""
Rate limiters that decide how long a key waits before it is retried.

The limiter used by the controller is the max of two limiters:

* A token bucket shared by every key that bounds the overall retry rate
* A per-key exponential backoff that keeps a persistently failing key from
  hot-looping even when the bucket has room

The limiter is only consulted on failure paths. Healthy resources are requeued
on a fixed interval.
"""

# Standard
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Callable, Dict, Hashable
import abc
import threading
import time

# First Party
import aconfig
import alog

# Local
from .exceptions import assert_config

log = alog.use_channel("RLIMT")

# Beyond this many doublings every realistic base delay exceeds any max delay
_MAX_EXPONENT = 62

## Config ######################################################################


@dataclass(frozen=True)
class RateLimiterConfig:
    """Parameters of the composite limiter"""

    burst: int
    frequency: float
    base_delay: timedelta
    max_delay: timedelta

    @classmethod
    def from_config(cls, rate_limiter_config: aconfig.Config) -> "RateLimiterConfig":
        """Build from the rate_limiter section of the library config"""
        assert_config(
            rate_limiter_config.burst >= 1, "rate_limiter.burst must be at least 1"
        )
        assert_config(
            rate_limiter_config.frequency > 0,
            "rate_limiter.frequency must be positive",
        )
        assert_config(
            rate_limiter_config.base_delay_seconds
            <= rate_limiter_config.max_delay_seconds,
            "rate_limiter.base_delay_seconds must not exceed max_delay_seconds",
        )
        return cls(
            burst=rate_limiter_config.burst,
            frequency=float(rate_limiter_config.frequency),
            base_delay=timedelta(seconds=rate_limiter_config.base_delay_seconds),
            max_delay=timedelta(seconds=rate_limiter_config.max_delay_seconds),
        )


class Outcome(Enum):
    """Result of a reconcile as seen by the limiter"""

    SUCCESS = "success"
    FAILURE = "failure"


## Limiters ####################################################################


class RateLimiter(abc.ABC):
    """Base class for all limiters. Implementations are thread safe."""

    @abc.abstractmethod
    def when(self, key: Hashable) -> timedelta:
        """Get how long the key should wait before its next attempt. Each call
        counts as one attempt.
        """

    @abc.abstractmethod
    def forget(self, key: Hashable):
        """Stop tracking the key, as on success"""

    @abc.abstractmethod
    def num_requeues(self, key: Hashable) -> int:
        """Get how many failures the key has accumulated"""

    def next_delay(self, key: Hashable, outcome: Outcome) -> timedelta:
        """Get the delay before the next attempt given the outcome of the last
        one. Success resets the key and never waits.
        """
        if outcome == Outcome.SUCCESS:
            self.forget(key)
            return timedelta(0)
        return self.when(key)


class BucketRateLimiter(RateLimiter):
    """Token bucket shared across all keys. The bucket starts full with
    `burst` tokens and refills at `frequency` tokens per second. Every call to
    when() reserves a token, so once the bucket is empty reservations queue up
    behind each other.
    """

    def __init__(
        self,
        frequency: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.frequency = frequency
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, key: Hashable) -> timedelta:
        with self._lock:
            now = self._clock()
            elapsed = max(now - self._last, 0.0)
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.frequency)
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return timedelta(0)
            wait = -self._tokens / self.frequency
        log.debug3("Bucket exhausted, %s waits %.3fs", key, wait)
        return timedelta(seconds=wait)

    def forget(self, key: Hashable):
        pass

    def num_requeues(self, key: Hashable) -> int:
        return 0


class ItemExponentialFailureRateLimiter(RateLimiter):
    """Per-key backoff of base_delay * 2^failures, capped at max_delay"""

    def __init__(self, base_delay: timedelta, max_delay: timedelta):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, key: Hashable) -> timedelta:
        with self._lock:
            exponent = self._failures.get(key, 0)
            self._failures[key] = exponent + 1
        if exponent > _MAX_EXPONENT:
            return self.max_delay
        backoff = self.base_delay.total_seconds() * (2**exponent)
        if backoff > self.max_delay.total_seconds():
            return self.max_delay
        return timedelta(seconds=backoff)

    def forget(self, key: Hashable):
        with self._lock:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._lock:
            return self._failures.get(key, 0)


class MaxOfRateLimiter(RateLimiter):
    """Returns the longest delay of its limiters. Every limiter is consulted on
    each call so that stateful limiters all record the attempt.
    """

    def __init__(self, *limiters: RateLimiter):
        assert limiters, "MaxOfRateLimiter needs at least one limiter"
        self.limiters = limiters

    def when(self, key: Hashable) -> timedelta:
        return max(limiter.when(key) for limiter in self.limiters)

    def forget(self, key: Hashable):
        for limiter in self.limiters:
            limiter.forget(key)

    def num_requeues(self, key: Hashable) -> int:
        return max(limiter.num_requeues(key) for limiter in self.limiters)


## Factory #####################################################################


def template_rate_limiter(
    limiter_config: RateLimiterConfig,
    clock: Callable[[], float] = time.monotonic,
) -> MaxOfRateLimiter:
    """Build the composite limiter used by the controller"""
    log.debug(
        "Building rate limiter burst=%d frequency=%s base=%s max=%s",
        limiter_config.burst,
        limiter_config.frequency,
        limiter_config.base_delay,
        limiter_config.max_delay,
    )
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(
            limiter_config.base_delay, limiter_config.max_delay
        ),
        BucketRateLimiter(limiter_config.frequency, limiter_config.burst, clock=clock),
    )
