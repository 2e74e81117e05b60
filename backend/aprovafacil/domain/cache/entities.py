"""
Cache Domain Entities

Core domain entities for cache management.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable

from .value_objects import TTL


@dataclass
class CacheEntry:
    """
    Cached value with its expiry.

    Timestamps come from a monotonic clock supplied by the store. An entry
    is live strictly before ``expires_at`` and absent from then on.
    """

    key: str
    value: Any
    created_at: float
    expires_at: float
    size_bytes: int = 0

    @classmethod
    def create(
        cls, key: str, value: Any, ttl: TTL, clock: Callable[[], float]
    ) -> "CacheEntry":
        """Create new cache entry expiring ``ttl`` from now."""
        now = clock()
        return cls(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl.seconds,
            size_bytes=estimate_size(key, value),
        )

    def is_expired(self, now: float) -> bool:
        """Check whether the entry is past its expiry."""
        return now >= self.expires_at

    def remaining_seconds(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


def estimate_size(key: str, value: Any) -> int:
    """Rough byte size of an entry based on its JSON form."""
    return len(key.encode("utf-8")) + len(
        json.dumps(value, default=str).encode("utf-8")
    )
