# ============================================================================
# errortrack -- Performance Monitor (errortrack/hooks/performance.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Reports slow work as "performance issue" events (severity warning):
#
#     issue type          trigger                                  default
#     ------------------  ---------------------------------------  -------
#     long-task           a measure() block runs too long           100 ms
#     slow-resource       a wrapped request takes too long         3000 ms
#     slow-page-load      process start -> mark_ready() too long   5000 ms
#     high-memory-usage   system memory in use above threshold        90 %
#                         (checked every 30 s while installed)
#
# HOW TO USE:
#   with tracker.measure("render_report"):
#       render_report()
#   ...
#   tracker.mark_ready()     # once startup is complete
#
# DEPENDENCIES:
#   - psutil (process start time, system memory)
# ============================================================================

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Callable, Optional

import psutil


def _process_start_time() -> float:
    return psutil.Process().create_time()


class PerformanceMonitor:
    """
    Threshold checks for one tracker. The clock, memory reader and process
    start time are injectable so tests do not depend on the machine.
    """

    def __init__(self, tracker, config,
                 timer: Callable[[], float] = time.perf_counter,
                 memory_reader: Callable = psutil.virtual_memory,
                 process_start: Callable[[], float] = _process_start_time,
                 wall_clock: Callable[[], float] = time.time):
        self.tracker = tracker
        self.config = config
        self._timer = timer
        self._memory_reader = memory_reader
        self._process_start = process_start
        self._wall_clock = wall_clock
        self._memory_handle = None
        self._installed = False

    # -- long tasks -------------------------------------------------------

    @contextmanager
    def measure(self, name: str):
        started = self._timer()
        try:
            yield
        finally:
            self.check_long_task(name, (self._timer() - started) * 1000)

    def check_long_task(self, name: str, duration_ms: float) -> bool:
        if duration_ms <= self.config.long_task_ms:
            return False
        self.tracker.capture_performance_issue("long-task", {
            "name": name,
            "duration": round(duration_ms, 1),
        })
        return True

    # -- slow resources ---------------------------------------------------

    def check_resource(self, url: str, duration_ms: float,
                       transfer_size: Optional[int] = None) -> bool:
        if duration_ms <= self.config.slow_resource_ms:
            return False
        self.tracker.capture_performance_issue("slow-resource", {
            "url": url,
            "duration": round(duration_ms, 1),
            "transferSize": transfer_size,
        })
        return True

    # -- startup ----------------------------------------------------------

    def mark_ready(self) -> float:
        """Report a slow start. Returns the measured load time (ms)."""
        load_ms = (self._wall_clock() - self._process_start()) * 1000
        if load_ms > self.config.slow_page_load_ms:
            self.tracker.capture_performance_issue("slow-page-load", {
                "loadTime": round(load_ms, 1),
            })
        return load_ms

    # -- memory -----------------------------------------------------------

    def check_memory(self) -> bool:
        memory = self._memory_reader()
        used = memory.total - memory.available
        fraction = used / memory.total if memory.total else 0.0
        if fraction <= self.config.memory_threshold:
            return False
        self.tracker.capture_performance_issue("high-memory-usage", {
            "usedMemoryMB": round(used / (1024 * 1024)),
            "limitMB": round(memory.total / (1024 * 1024)),
            "percentage": round(fraction * 100),
        })
        return True

    def _memory_tick(self) -> None:
        self._memory_handle = None
        if not self._installed:
            return
        try:
            self.check_memory()
        except (psutil.Error, OSError, AttributeError) as e:
            self.tracker.logger.warning("memory_check_failed", error=str(e))
        self._schedule_memory_check()

    def _schedule_memory_check(self) -> None:
        self._memory_handle = self.tracker.scheduler.call_later(
            self.config.memory_check_seconds, self._memory_tick
        )

    # -- hook protocol ----------------------------------------------------

    def install(self, tracker=None) -> Callable[[], None]:
        self._installed = True
        self._schedule_memory_check()
        return self.uninstall

    def uninstall(self) -> None:
        self._installed = False
        if self._memory_handle is not None:
            self._memory_handle.cancel()
            self._memory_handle = None
