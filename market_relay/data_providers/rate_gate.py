"""
Rate Gate

Minimum-interval gate keyed by operation.
Used as the per-instrument throttle (client-requested refresh interval)
and as a provider-wide call gate for rate-limited upstreams.
"""
import time
from dataclasses import dataclass
from typing import Callable, Optional
from loguru import logger

from market_relay.utils.exceptions import InvalidIntervalError, SubscriptionNotFoundError


@dataclass
class GateEntry:
    """Gate state for one key."""
    min_interval: float
    last_permitted: Optional[float] = None  # None = never permitted

    def elapsed(self, now: float) -> Optional[float]:
        if self.last_permitted is None:
            return None
        return now - self.last_permitted


class RateGate:
    """
    Tracks, per key, whether enough time has passed since the last permitted call.

    An unconfigured key is never eligible: `can_proceed` returns False and
    callers that treat missing config as "not gated" must check
    `is_configured` first.
    """

    def __init__(
        self,
        min_interval: int = 1,
        max_interval: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._min_interval = min_interval
        self._max_interval = max_interval
        self._clock = clock
        self._entries: dict[str, GateEntry] = {}

    def validate_interval(self, seconds) -> float:
        """Return the interval as float, or raise InvalidIntervalError."""
        if (
            isinstance(seconds, bool)
            or not isinstance(seconds, (int, float))
            or not self._min_interval <= seconds <= self._max_interval
        ):
            raise InvalidIntervalError(seconds, self._min_interval, self._max_interval)
        return float(seconds)

    def configure(self, key: str, min_interval_seconds: float) -> None:
        """Set the interval for a key and make it immediately eligible."""
        interval = self.validate_interval(min_interval_seconds)
        self._entries[key] = GateEntry(min_interval=interval)
        logger.debug(f"Rate gate configured for {key}: {interval:g}s")

    def update_interval(self, key: str, min_interval_seconds: float) -> None:
        """Change the interval of an existing key, keeping its last-permitted time."""
        interval = self.validate_interval(min_interval_seconds)
        entry = self._entries.get(key)
        if entry is None:
            raise SubscriptionNotFoundError(key)
        entry.min_interval = interval
        logger.info(f"Rate gate interval for {key} updated to {interval:g}s")

    def is_configured(self, key: str) -> bool:
        return key in self._entries

    def can_proceed(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        elapsed = entry.elapsed(self._clock())
        return elapsed is None or elapsed >= entry.min_interval

    def record_success(self, key: str) -> None:
        """
        Mark a permitted call for the key.

        No-op for unknown keys, so a fetch that completes after `remove`
        does not resurrect state.
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"Rate gate record skipped for unconfigured key {key}")
            return
        entry.last_permitted = self._clock()

    # Throttle vocabulary
    record_update = record_success

    def remove(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            logger.debug(f"Rate gate removed for {key}")

    def remaining_seconds(self, key: str) -> float:
        """Seconds until the key is eligible again (0 when eligible or unknown)."""
        entry = self._entries.get(key)
        if entry is None:
            return 0.0
        elapsed = entry.elapsed(self._clock())
        if elapsed is None:
            return 0.0
        return max(0.0, entry.min_interval - elapsed)

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def get_stats(self, key: str) -> dict:
        """Get gate statistics for a key."""
        entry = self._entries.get(key)
        if entry is None:
            return {"configured": False}
        return {
            "configured": True,
            "min_interval_seconds": entry.min_interval,
            "remaining_seconds": round(self.remaining_seconds(key), 3),
            "can_proceed": self.can_proceed(key),
            "ever_permitted": entry.last_permitted is not None,
        }

    def get_status(self) -> dict:
        """Summary across all keys."""
        entries = {key: self.get_stats(key) for key in list(self._entries.keys())}
        return {
            "total_keys": len(entries),
            "eligible": sum(1 for e in entries.values() if e["can_proceed"]),
            "entries": entries,
        }
