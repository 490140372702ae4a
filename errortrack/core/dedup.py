# ============================================================================
# errortrack -- Fingerprint Registry / Deduplicator (errortrack/core/dedup.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Remembers which fingerprints were successfully transmitted, and until
#   when. While an entry is live, new events with that fingerprint are
#   discarded instead of queued.
#
# LIFECYCLE OF AN ENTRY:
#   register(fp)      -- only after the collector acknowledged the event
#   is_suppressed(fp) -- True while now < expiry
#   (expired)         -- removed lazily on the next admission check
#
#   An event that was captured but never sent is NOT registered, so a
#   later occurrence of the same failure can still be reported.
#
# CLOCK:
#   Injectable (seconds, float). Tests pass a fake clock.
# ============================================================================

from __future__ import annotations

import time
from typing import Callable, Dict, Iterable, Optional


class FingerprintRegistry:
    """
    Mapping fingerprint -> expiry timestamp with a fixed TTL.

    max_entries bounds memory. When full, the entry closest to expiry is
    evicted first.
    """

    def __init__(self,
                 ttl_seconds: float = 24 * 60 * 60,
                 clock: Optional[Callable[[], float]] = None,
                 max_entries: int = 10000):
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.time
        self._max_entries = max_entries
        self._expiry: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._expiry)

    def __contains__(self, fingerprint: str) -> bool:
        expiry = self._expiry.get(fingerprint)
        return expiry is not None and expiry > self._clock()

    def is_suppressed(self, fingerprint: str) -> bool:
        """
        Admission check. Sweeps expired entries as a side effect.
        """
        now = self._clock()
        self.sweep(now)
        expiry = self._expiry.get(fingerprint)
        return expiry is not None and expiry > now

    def register(self, fingerprint: str) -> None:
        """Mark a fingerprint as sent; it is suppressed for ttl_seconds."""
        if not fingerprint:
            return
        self._expiry[fingerprint] = self._clock() + self.ttl_seconds
        if len(self._expiry) > self._max_entries:
            oldest = min(self._expiry, key=self._expiry.get)
            del self._expiry[oldest]

    def register_all(self, fingerprints: Iterable[str]) -> None:
        for fp in fingerprints:
            self.register(fp)

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove expired entries. Returns how many were removed."""
        now = self._clock() if now is None else now
        expired = [fp for fp, exp in self._expiry.items() if exp <= now]
        for fp in expired:
            del self._expiry[fp]
        return len(expired)

    def expiry_of(self, fingerprint: str) -> Optional[float]:
        return self._expiry.get(fingerprint)
