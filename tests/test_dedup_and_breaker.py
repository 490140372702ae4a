# ============================================================================
# errortrack -- Registry and Circuit Breaker Tests (tests/test_dedup_and_breaker.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Unit tests for the two time-driven state holders, using FakeClock.
#
# USAGE:
#   pytest tests/test_dedup_and_breaker.py -v
#
# INTERNET ACCESS: NONE
# ============================================================================

import os
import sys

sys.path.insert(0, os.path.dirname(__file__))
from conftest import FakeClock

from errortrack.core.circuit_breaker import CircuitBreaker
from errortrack.core.dedup import FingerprintRegistry

DAY = 24 * 60 * 60


class TestFingerprintRegistry:
    def _make_registry(self, **kwargs):
        clock = FakeClock()
        return FingerprintRegistry(clock=clock, **kwargs), clock

    def test_unknown_fingerprint_not_suppressed(self):
        registry, _ = self._make_registry()
        assert registry.is_suppressed("abc12345") is False

    def test_registered_fingerprint_suppressed_within_ttl(self):
        registry, clock = self._make_registry()
        registry.register("abc12345")
        clock.advance(DAY - 1)
        assert registry.is_suppressed("abc12345") is True

    def test_expires_after_ttl(self):
        registry, clock = self._make_registry()
        registry.register("abc12345")
        clock.advance(DAY)
        assert registry.is_suppressed("abc12345") is False

    def test_admission_check_sweeps_expired(self):
        """
        WHAT: expired entries disappear on the next admission check.
        WHY:  no cleanup timer exists; the sweep is the only cleanup.
        """
        registry, clock = self._make_registry()
        registry.register("old00000")
        clock.advance(DAY + 1)
        registry.register("new00000")
        registry.is_suppressed("whatever")
        assert len(registry) == 1
        assert "new00000" in registry

    def test_register_refreshes_expiry(self):
        registry, clock = self._make_registry()
        registry.register("abc12345")
        clock.advance(DAY - 10)
        registry.register("abc12345")
        clock.advance(20)
        assert registry.is_suppressed("abc12345") is True

    def test_bounded_size_evicts_oldest(self):
        registry, clock = self._make_registry(max_entries=2)
        registry.register("a0000000")
        clock.advance(1)
        registry.register("b0000000")
        clock.advance(1)
        registry.register("c0000000")
        assert len(registry) == 2
        assert "a0000000" not in registry

    def test_empty_fingerprint_ignored(self):
        registry, _ = self._make_registry()
        registry.register("")
        assert len(registry) == 0


class TestCircuitBreaker:
    def _make_breaker(self):
        clock = FakeClock()
        return CircuitBreaker(overload_threshold=3, open_seconds=300, clock=clock), clock

    def test_starts_closed(self):
        breaker, _ = self._make_breaker()
        assert breaker.is_open() is False

    def test_opens_on_third_consecutive_overload(self):
        breaker, _ = self._make_breaker()
        assert breaker.record_overload() is False
        assert breaker.record_overload() is False
        assert breaker.record_overload() is True
        assert breaker.is_open() is True

    def test_success_resets_streak(self):
        breaker, _ = self._make_breaker()
        breaker.record_overload()
        breaker.record_overload()
        breaker.record_success()
        assert breaker.record_overload() is False
        assert breaker.is_open() is False

    def test_closes_after_cooldown_and_resets_counter(self):
        breaker, clock = self._make_breaker()
        for _ in range(3):
            breaker.record_overload()
        clock.advance(299)
        assert breaker.is_open() is True
        clock.advance(1)
        assert breaker.is_open() is False
        assert breaker.consecutive_overloads == 0
        assert breaker.state.active is False
