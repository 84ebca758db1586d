"""Token-bucket rate limiting.

One bucket per (tier, client key). Buckets refill continuously at
``refill_tokens / refill_period_seconds`` tokens per second up to their
capacity, and every admitted request consumes one token.

The limiter is a plain object owned by the application (see
``main.create_app``) and handed to the middleware; it knows nothing
about HTTP. Rejection is reported through the returned ``Decision``
rather than an exception so the caller decides how to respond.

Concurrency: each bucket has its own lock, so check-and-deduct is atomic
per key while distinct keys never contend. The bucket table itself is a
dict updated only through single atomic operations (``setdefault`` and
``pop``).
"""

import asyncio
import math
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum

from commerce_api.logging import get_logger

logger = get_logger(__name__)

# Tolerance on token counts. Retry hints round against half of it so that
# waiting exactly retry_after_seconds admits despite float drift.
_EPSILON = 1e-9


class Tier(StrEnum):
    """Client classes with separate bucket configurations."""

    ANONYMOUS = "anonymous"
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Capacity and refill configuration shared by all buckets of a tier."""

    capacity: int
    refill_tokens: int
    refill_period_seconds: float

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("capacity must be positive")
        if self.refill_tokens <= 0:
            raise ValueError("refill_tokens must be positive")
        if self.refill_period_seconds <= 0:
            raise ValueError("refill_period_seconds must be positive")

    @property
    def refill_rate(self) -> float:
        """Tokens restored per second."""
        return self.refill_tokens / self.refill_period_seconds


@dataclass(frozen=True)
class Decision:
    """Outcome of one admission check."""

    allowed: bool
    remaining_tokens: int
    retry_after_seconds: int


@dataclass(frozen=True)
class QuotaSnapshot:
    """Read-only view of a bucket, taken without consuming a token."""

    tier: Tier
    capacity: int
    remaining_tokens: int


class TokenBucket:
    """Mutable bucket state. Every method expects ``lock`` to be held."""

    __slots__ = ("policy", "tokens", "last_refill", "last_seen", "evicted", "lock")

    def __init__(self, policy: RateLimitPolicy, now: float) -> None:
        self.policy = policy
        self.tokens = float(policy.capacity)
        self.last_refill = now
        self.last_seen = now
        self.evicted = False
        self.lock = threading.Lock()

    def refill(self, now: float) -> None:
        # A clock read before another thread's update can lag behind last_refill
        elapsed = max(0.0, now - self.last_refill)
        if elapsed:
            accrued = elapsed * self.policy.refill_rate
            self.tokens = min(float(self.policy.capacity), self.tokens + accrued)
            self.last_refill = now

    def try_consume(self, now: float) -> Decision:
        self.refill(now)
        self.last_seen = now
        if self.tokens + _EPSILON >= 1.0:
            self.tokens = max(0.0, self.tokens - 1.0)
            return Decision(allowed=True, remaining_tokens=self.available(), retry_after_seconds=0)
        missing = 1.0 - self.tokens
        retry_after = max(1, math.ceil((missing - _EPSILON / 2) / self.policy.refill_rate))
        return Decision(allowed=False, remaining_tokens=0, retry_after_seconds=retry_after)

    def available(self) -> int:
        return int(math.floor(self.tokens + _EPSILON))

    def is_full(self, now: float) -> bool:
        self.refill(now)
        return self.tokens + _EPSILON >= self.policy.capacity


class RateLimiter:
    """Per-process quota manager.

    Args:
        policies: Bucket policy for every tier that may be admitted.
        clock: Monotonic time source in seconds, injectable for tests.
        idle_ttl_seconds: Minimum idle time before ``evict_idle`` may drop
            a bucket. Only buckets that have refilled to capacity are
            dropped, so eviction is invisible to clients.

    Example:
        limiter = RateLimiter(settings.rate_limit_policies())
        decision = limiter.admit("203.0.113.7", Tier.ANONYMOUS)
        if not decision.allowed:
            ...  # respond 429 with decision.retry_after_seconds
    """

    def __init__(
        self,
        policies: Mapping[Tier, RateLimitPolicy],
        *,
        clock: Callable[[], float] = time.monotonic,
        idle_ttl_seconds: float = 600.0,
    ) -> None:
        self._policies = dict(policies)
        self._clock = clock
        self._idle_ttl = idle_ttl_seconds
        self._buckets: dict[tuple[Tier, str], TokenBucket] = {}

    def __len__(self) -> int:
        return len(self._buckets)

    def policy(self, tier: Tier) -> RateLimitPolicy:
        try:
            return self._policies[tier]
        except KeyError:
            raise ValueError(f"No rate limit policy configured for tier {tier!r}") from None

    def _bucket(self, key: tuple[Tier, str]) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            fresh = TokenBucket(self.policy(key[0]), self._clock())
            bucket = self._buckets.setdefault(key, fresh)
        return bucket

    def admit(self, client_key: str, tier: Tier = Tier.ANONYMOUS) -> Decision:
        """Consume one token for ``client_key`` if one is available."""
        key = (tier, client_key)
        while True:
            bucket = self._bucket(key)
            with bucket.lock:
                if bucket.evicted:
                    # Dropped between lookup and lock; the next lookup creates a new one
                    continue
                return bucket.try_consume(self._clock())

    def snapshot(self, client_key: str, tier: Tier = Tier.ANONYMOUS) -> QuotaSnapshot:
        """Report the current quota of ``client_key`` without consuming."""
        policy = self.policy(tier)
        bucket = self._buckets.get((tier, client_key))
        if bucket is None:
            return QuotaSnapshot(tier=tier, capacity=policy.capacity, remaining_tokens=policy.capacity)
        with bucket.lock:
            bucket.refill(self._clock())
            remaining = bucket.available()
        return QuotaSnapshot(tier=tier, capacity=policy.capacity, remaining_tokens=remaining)

    def evict_idle(self) -> int:
        """Drop idle buckets that are back at full capacity. Returns the count."""
        evicted = 0
        for key, bucket in list(self._buckets.items()):
            with bucket.lock:
                now = self._clock()
                if bucket.evicted or now - bucket.last_seen < self._idle_ttl:
                    continue
                if not bucket.is_full(now):
                    continue
                bucket.evicted = True
                self._buckets.pop(key, None)
                evicted += 1
        return evicted

    async def run_evictions(self, interval_seconds: float) -> None:
        """Sweep idle buckets every ``interval_seconds`` until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            evicted = self.evict_idle()
            if evicted:
                logger.debug("rate_limit_buckets_evicted", evicted=evicted, remaining=len(self))
