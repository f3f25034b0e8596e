"""Per-client token buckets for the control API."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class ClientRateLimiter:
    """
    ``burst`` requests at once, refilled at ``requests_per_minute``.

    Buckets idle for ``idle_ttl`` seconds are forgotten on the next sweep.
    """

    def __init__(
        self,
        idle_ttl: float = 600.0,
        sweep_every: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_ttl = idle_ttl
        self.sweep_every = sweep_every
        self._clock = clock
        self._buckets: Dict[str, _Bucket] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._buckets)

    def allow(self, client: str, requests_per_minute: int, burst: int) -> bool:
        now = self._clock()
        self._sweep(now)
        capacity = float(max(1, burst))
        refill_per_second = max(1, requests_per_minute) / 60.0

        bucket = self._buckets.get(client)
        if bucket is None:
            bucket = self._buckets[client] = _Bucket(tokens=capacity, updated_at=now)
        else:
            elapsed = now - bucket.updated_at
            bucket.tokens = min(capacity, bucket.tokens + elapsed * refill_per_second)
            bucket.updated_at = now

        if bucket.tokens < 1.0:
            return False
        bucket.tokens -= 1.0
        return True

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.sweep_every:
            return
        self._last_sweep = now
        idle = [k for k, b in self._buckets.items() if now - b.updated_at > self.idle_ttl]
        for key in idle:
            del self._buckets[key]
