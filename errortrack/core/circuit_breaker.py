# ============================================================================
# errortrack -- Circuit Breaker (errortrack/core/circuit_breaker.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Stops all transmission for a cooldown period after the collector says
#   "slow down" (HTTP 429) several times in a row.
#
# STATES:
#   closed -- normal; flushes transmit
#   open   -- every flush is a silent no-op that empties the queue
#
# TRANSITIONS:
#   closed -> open    consecutive_overloads reaches overload_threshold
#   open   -> closed  wall clock passes active_until (checked lazily on
#                     the next is_open() call); counter resets to 0
#   any success       counter resets to 0
#
# The queue purge that accompanies opening is done by the tracker, which
# owns the queue. This class only holds state.
# ============================================================================

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class CircuitBreakerState:
    active: bool = False
    active_until: float = 0.0
    consecutive_overloads: int = 0


class CircuitBreaker:
    """Time-based breaker driven by consecutive overload signals."""

    def __init__(self,
                 overload_threshold: int = 3,
                 open_seconds: float = 300.0,
                 clock: Optional[Callable[[], float]] = None):
        self.overload_threshold = overload_threshold
        self.open_seconds = open_seconds
        self._clock = clock or time.time
        self.state = CircuitBreakerState()

    def is_open(self) -> bool:
        """True while transmission is suspended. Closes itself on expiry."""
        if not self.state.active:
            return False
        if self._clock() < self.state.active_until:
            return True
        self.state = CircuitBreakerState()
        return False

    def record_overload(self) -> bool:
        """
        Count one overload signal. Returns True if this call opened the
        breaker.
        """
        self.state.consecutive_overloads += 1
        if self.state.consecutive_overloads >= self.overload_threshold:
            self.state.active = True
            self.state.active_until = self._clock() + self.open_seconds
            return True
        return False

    def record_success(self) -> None:
        self.state.consecutive_overloads = 0

    @property
    def consecutive_overloads(self) -> int:
        return self.state.consecutive_overloads
