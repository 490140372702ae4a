# ============================================================================
# conftest.py -- Shared Test Fixtures for the errortrack Test Suite
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Pytest automatically loads this file before any test runs.
#   It provides:
#     1. sys.path setup so "from errortrack.core.X import Y" works from
#        any test without installing the package
#     2. Fakes for the tracker's collaborators: clock, scheduler, socket,
#        collector (an httpx.MockTransport that records what it receives)
#     3. make_config() / make_tracker() helpers used by every test file
#
# WHY FAKES:
#   The pipeline is all about time (idle delay, backoff, TTL, breaker
#   cooldown) and the network. With a fake clock and a scheduler that only
#   runs timers when told to, a 24-hour TTL test takes microseconds and
#   never flakes.
#
# INTERNET ACCESS: NONE
# ============================================================================

import asyncio
import json
import sys
import time
from pathlib import Path
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import httpx
import pytest

# -- sys.path setup --
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from errortrack.core.config import Config  # noqa: E402
from errortrack.core.storage import MemoryStorage  # noqa: E402
from errortrack.core.tracker import ErrorTracker  # noqa: E402

COLLECTOR_BASE = "http://collector.test"


# ============================================================================
# SECTION 1: TIME
# ============================================================================

class FakeClock:
    """Wall clock that only moves when a test says so."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeTimer:
    due: float
    callback: Callable
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """
    Scheduler that records instead of running.

    call_later() -> stored timer, fired by advance()
    spawn()      -> stored coroutine, run by drain() with asyncio.run()
    call_soon()  -> runs immediately (tests are single-threaded)
    run()        -> asyncio.run() right away
    """

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.timers: List[FakeTimer] = []
        self.spawned: list = []

    def call_later(self, delay, callback):
        timer = FakeTimer(self.clock() + delay, callback)
        self.timers.append(timer)
        return timer

    def call_soon(self, callback):
        callback()

    def spawn(self, coro):
        self.spawned.append(coro)

    def run(self, coro):
        return asyncio.run(coro)

    @property
    def active_timers(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def next_due(self) -> Optional[float]:
        active = self.active_timers
        return min(t.due for t in active) if active else None

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order."""
        target = self.clock() + seconds
        while True:
            due = [t for t in self.active_timers if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.timers.remove(timer)
            self.clock.now = max(self.clock.now, timer.due)
            timer.callback()
        self.clock.now = target

    def drain(self) -> int:
        """Run every spawned coroutine (and any they spawn) to completion."""
        ran = 0
        while self.spawned:
            coro = self.spawned.pop(0)
            asyncio.run(coro)
            ran += 1
        return ran

    def run_until_idle(self, max_steps: int = 100) -> None:
        """Alternate drain() and the next timer until nothing is left."""
        for _ in range(max_steps):
            self.drain()
            due = self.next_due()
            if due is None:
                return
            self.advance(due - self.clock())
        raise AssertionError("scheduler did not go idle")


# ============================================================================
# SECTION 2: NETWORK
# ============================================================================

class RecordingCollector:
    """
    Stand-in for the collector endpoint, served through httpx.MockTransport.

    statuses: one status per request, consumed in order; after that
              default_status is used.
    fail:     when True every request raises httpx.ConnectError.
    """

    def __init__(self, statuses: Optional[List[int]] = None, default_status: int = 202):
        self.statuses = list(statuses or [])
        self.default_status = default_status
        self.fail = False
        self.requests: List[httpx.Request] = []
        self.payloads: List[list] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            raise httpx.ConnectError("collector down", request=request)
        body = json.loads(request.content.decode("utf-8"))
        self.payloads.append(body["errors"])
        status = self.statuses.pop(0) if self.statuses else self.default_status
        if status == 429:
            return httpx.Response(429, json={"error": "Too many error reports"})
        if status >= 400:
            return httpx.Response(status, json={"error": "collector failure"})
        return httpx.Response(status, json={"accepted": len(body["errors"])})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def events(self) -> list:
        """Every wire event received, in order."""
        return [e for chunk in self.payloads for e in chunk]

    @property
    def chunk_sizes(self) -> List[int]:
        return [len(chunk) for chunk in self.payloads]


class FakeSocket:
    """Realtime connection exposing on()/off() like a socketio client."""

    def __init__(self, sid: str = "sock-1"):
        self.sid = sid
        self.reconnecting = False
        self.handlers = {}

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def off(self, event, handler):
        if handler in self.handlers.get(event, []):
            self.handlers[event].remove(handler)

    def emit(self, event, *args):
        for handler in list(self.handlers.get(event, [])):
            handler(*args)


# ============================================================================
# SECTION 3: BUILDERS
# ============================================================================

def make_config(**sections) -> Config:
    """
    Default Config pointed at the fake collector, with every capture hook
    off. Keyword arguments override attributes per section:
        make_config(batching={"max_queue_size": 100})
    """
    config = Config()
    config.enabled = True
    config.collector.base_url = COLLECTOR_BASE
    config.collector.endpoint = "/api/telemetry/errors"
    config.storage.path = ""
    for name in vars(config.capture):
        setattr(config.capture, name, False)
    for section, values in sections.items():
        target = getattr(config, section)
        for key, value in values.items():
            setattr(target, key, value)
    return config


@dataclass
class TrackerRig:
    """A tracker plus the fakes wired into it."""
    tracker: ErrorTracker
    clock: FakeClock
    scheduler: FakeScheduler
    collector: RecordingCollector
    storage: MemoryStorage = field(default_factory=MemoryStorage)


def make_tracker(config: Optional[Config] = None,
                 collector: Optional[RecordingCollector] = None,
                 storage: Optional[MemoryStorage] = None,
                 clock: Optional[FakeClock] = None,
                 transport=None) -> TrackerRig:
    clock = clock or FakeClock()
    scheduler = FakeScheduler(clock)
    collector = collector or RecordingCollector()
    storage = storage if storage is not None else MemoryStorage()
    tracker = ErrorTracker(
        config or make_config(),
        storage=storage,
        transport=transport or collector.transport,
        scheduler=scheduler,
        clock=clock,
    )
    return TrackerRig(tracker, clock, scheduler, collector, storage)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate until it holds. For tests that use real threads."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def rig():
    rig = make_tracker()
    yield rig
    rig.tracker.uninstall_hooks()
