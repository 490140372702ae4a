# ============================================================================
# errortrack -- Scheduler and Retry Policy (errortrack/core/scheduler.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   The tracker never sleeps. Deferred work (idle flush, backoff retry,
#   periodic memory check), captures from foreign threads and background
#   sends go through a Scheduler:
#
#     call_later(delay, cb) -> handle with .cancel()
#     call_soon(cb)         -> run cb on the owning loop (thread-safe)
#     spawn(coro)           -> run a coroutine in the background
#     run(coro)             -> run a coroutine to completion from sync code
#
#   AsyncioScheduler is the production implementation. Tests use a fake
#   that records timers and runs them on demand.
#
# WITHOUT A RUNNING EVENT LOOP (plain synchronous programs):
#   The first call starts a daemon thread "errortrack-scheduler" running
#   its own event loop. Timers, captures and sends all execute on that
#   thread, so the pipeline state is only ever touched by one thread.
#   shutdown() stops it; ErrorTracker.close() does this for a scheduler
#   it created itself.
#
# RETRY POLICY:
#   delay(attempt) = base_delay * multiplier ** attempt
#   attempt 0 -> 1s, 1 -> 2s, 2 -> 4s, 3 -> 8s, 4 -> 16s, then give up
# ============================================================================

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Optional, Protocol, Set

WORKER_THREAD_NAME = "errortrack-scheduler"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff value object."""

    base_delay: float = 1.0
    multiplier: float = 2.0
    max_retries: int = 5

    @classmethod
    def from_config(cls, retry) -> "RetryPolicy":
        return cls(
            base_delay=retry.base_delay_seconds,
            multiplier=retry.multiplier,
            max_retries=retry.max_retries,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        return self.base_delay * (self.multiplier ** attempt)

    def exhausted(self, attempt: int) -> bool:
        """True once `attempt` retries have already been used."""
        return attempt >= self.max_retries


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> Optional[TimerHandle]: ...

    def call_soon(self, callback: Callable[[], Any]) -> None: ...

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None: ...

    def run(self, coro: Coroutine[Any, Any, Any]) -> Any: ...


def _current_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class _ThreadsafeTimer:
    """Timer armed on a loop owned by another thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop, delay: float,
                 callback: Callable[[], Any]):
        self._loop = loop
        self._lock = threading.Lock()
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False
        loop.call_soon_threadsafe(self._arm, delay, callback)

    def _arm(self, delay: float, callback: Callable[[], Any]) -> None:
        with self._lock:
            if not self._cancelled:
                self._handle = self._loop.call_later(delay, callback)

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            handle = self._handle
        if handle is None:
            return
        if _current_loop() is self._loop:
            handle.cancel()
            return
        try:
            self._loop.call_soon_threadsafe(handle.cancel)
        except RuntimeError:
            # Loop already closed, the timer can no longer fire
            pass


class AsyncioScheduler:
    """
    Scheduler on top of an asyncio event loop.

    The loop is resolved lazily: the first call made from inside a
    running loop binds this scheduler to it, so a tracker created at
    import time still works once the application starts its loop.
    Calls from other threads are handed to the bound loop. When no
    loop is running anywhere, a daemon worker thread with its own loop
    is started and owns the pipeline from then on.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or _current_loop()
        self._tasks: Set[asyncio.Task] = set()
        self._futures: Set[concurrent.futures.Future] = set()
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    # -- loop resolution --------------------------------------------

    def _target_loop(self) -> asyncio.AbstractEventLoop:
        if self._worker is None:
            running = _current_loop()
            if running is not None:
                self._loop = running
                return running
            loop = self._loop
            if loop is not None and not loop.is_closed() and loop.is_running():
                return loop
        return self._worker_loop()

    def _worker_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return self._loop
            loop = asyncio.new_event_loop()
            ready = threading.Event()

            def run() -> None:
                asyncio.set_event_loop(loop)
                loop.call_soon(ready.set)
                try:
                    loop.run_forever()
                finally:
                    loop.close()

            thread = threading.Thread(target=run, name=WORKER_THREAD_NAME, daemon=True)
            thread.start()
            ready.wait()
            self._loop = loop
            self._worker = thread
            return loop

    # -- Scheduler protocol -----------------------------------------

    def call_later(self, delay: float, callback: Callable[[], Any]) -> Optional[TimerHandle]:
        loop = self._target_loop()
        if _current_loop() is loop:
            return loop.call_later(delay, callback)
        return _ThreadsafeTimer(loop, delay, callback)

    def call_soon(self, callback: Callable[[], Any]) -> None:
        loop = self._target_loop()
        if _current_loop() is loop:
            callback()
        else:
            loop.call_soon_threadsafe(callback)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        loop = self._target_loop()
        if _current_loop() is loop:
            task = loop.create_task(coro)
            # Keep a strong reference until the task finishes
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        self._futures.add(future)
        future.add_done_callback(self._futures.discard)

    def run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """
        Run a coroutine to completion from synchronous code and return
        its result. Work already handed to the owning loop runs first.
        """
        loop = self._loop
        if loop is not None and not loop.is_closed() and loop.is_running():
            return asyncio.run_coroutine_threadsafe(coro, loop).result()
        return asyncio.run(coro)

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop the worker thread, if one was started."""
        with self._lock:
            worker, loop = self._worker, self._loop
            self._worker = None
            if worker is not None:
                self._loop = None
        if worker is None:
            return
        if not loop.is_closed():
            loop.call_soon_threadsafe(loop.stop)
        if worker is not threading.current_thread():
            worker.join(timeout)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks) + len(self._futures)

    @property
    def worker_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()
