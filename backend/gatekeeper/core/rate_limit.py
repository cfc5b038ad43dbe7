"""In-memory dual-window rate limiting (per minute and per hour).

Each identifier gets its own entry with its own lock; the map lock is only
held to look up, insert or remove entries, so unrelated callers never wait
on each other. State is process-local: a multi-instance deployment needs a
shared store instead.
"""

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from gatekeeper.config import Settings

logger = logging.getLogger("gatekeeper.ratelimit")

MINUTE_WINDOW = 60.0
HOUR_WINDOW = 3600.0


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    minute_limit: int
    hour_limit: int
    minute_remaining: int
    hour_remaining: int
    retry_after: int | None = None
    message: str | None = None

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit-Minute": str(self.minute_limit),
            "X-RateLimit-Limit-Hour": str(self.hour_limit),
            "X-RateLimit-Remaining-Minute": str(self.minute_remaining),
            "X-RateLimit-Remaining-Hour": str(self.hour_remaining),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class _Entry:
    __slots__ = (
        "lock",
        "minute_count",
        "minute_start",
        "hour_count",
        "hour_start",
        "last_seen",
        "evicted",
    )

    def __init__(self, now: float):
        self.lock = threading.Lock()
        self.minute_count = 0
        self.minute_start = now
        self.hour_count = 0
        self.hour_start = now
        self.last_seen = now
        # Set under self.lock by the sweep; a hit that sees it starts over
        self.evicted = False


class RateLimiter:
    """Fixed-window counters keyed by a resolved identifier.

    Windows reset wholesale once ``now - window_start >= window_length``.
    The minute limit is checked before the hour limit; a denied request does
    not count against either window.
    """

    def __init__(
        self,
        *,
        per_minute: int = 60,
        per_hour: int = 1000,
        idle_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.per_minute = per_minute
        self.per_hour = per_hour
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._map_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        return cls(
            per_minute=settings.rate_limit_per_minute,
            per_hour=settings.rate_limit_per_hour,
            idle_seconds=settings.rate_limit_idle_seconds,
        )

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._entries)

    def _entry_for(self, identifier: str) -> _Entry:
        with self._map_lock:
            entry = self._entries.get(identifier)
            if entry is None or entry.evicted:
                entry = _Entry(self._clock())
                self._entries[identifier] = entry
            return entry

    def hit(self, identifier: str) -> RateLimitDecision:
        """Count one request for ``identifier`` and decide whether it may proceed."""
        while True:
            entry = self._entry_for(identifier)
            with entry.lock:
                if entry.evicted:
                    continue
                return self._apply(entry, self._clock())

    def _apply(self, entry: _Entry, now: float) -> RateLimitDecision:
        if now - entry.minute_start >= MINUTE_WINDOW:
            entry.minute_count = 0
            entry.minute_start = now
        if now - entry.hour_start >= HOUR_WINDOW:
            entry.hour_count = 0
            entry.hour_start = now
        entry.last_seen = now

        if entry.minute_count >= self.per_minute:
            return self._decision(
                entry,
                allowed=False,
                retry_after=int(MINUTE_WINDOW),
                message=(
                    f"Rate limit exceeded. Maximum {self.per_minute} "
                    "requests per minute allowed."
                ),
            )
        if entry.hour_count >= self.per_hour:
            until_reset = HOUR_WINDOW - (now - entry.hour_start)
            return self._decision(
                entry,
                allowed=False,
                retry_after=max(1, math.ceil(until_reset)),
                message=(
                    f"Rate limit exceeded. Maximum {self.per_hour} "
                    "requests per hour allowed."
                ),
            )

        entry.minute_count += 1
        entry.hour_count += 1
        return self._decision(entry, allowed=True)

    def _decision(self, entry: _Entry, **kwargs) -> RateLimitDecision:
        return RateLimitDecision(
            minute_limit=self.per_minute,
            hour_limit=self.per_hour,
            minute_remaining=max(0, self.per_minute - entry.minute_count),
            hour_remaining=max(0, self.per_hour - entry.hour_count),
            **kwargs,
        )

    def evict_idle(self) -> int:
        """Drop entries untouched for longer than ``idle_seconds``."""
        with self._map_lock:
            candidates = list(self._entries.items())

        removed = 0
        for identifier, entry in candidates:
            with entry.lock:
                if self._clock() - entry.last_seen <= self.idle_seconds:
                    continue
                entry.evicted = True
            with self._map_lock:
                if self._entries.get(identifier) is entry:
                    del self._entries[identifier]
                    removed += 1

        if removed:
            logger.info("Evicted %d idle rate limit entries", removed)
        return removed
