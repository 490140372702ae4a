# ============================================================================
# errortrack -- Uncaught Exception Hooks (errortrack/hooks/runtime.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Observes exceptions nobody caught:
#
#     ExceptHook        sys.excepthook        main-thread crashes
#     ThreadExceptHook  threading.excepthook  exceptions escaping Thread.run
#     AsyncioHook       loop exception handler  "Task exception was never
#                                             retrieved", failing callbacks
#
#   Each hook wraps the handler that was there before and always calls
#   it afterwards, so the traceback still prints and any other installed
#   handler still runs. The pipeline only watches.
#
# INSTALL / RESTORE:
#   restore = ExceptHook().install(tracker)
#   ...
#   restore()   # previous handler is back
#
#   If another library wrapped the handler after us, restore() cannot
#   put the old one back without removing theirs. In that case our
#   wrapper is switched off and stays in the chain as a pass-through.
#
# INTERNET ACCESS: NONE
# ============================================================================

from __future__ import annotations

import asyncio
import sys
import threading
from functools import partial
from typing import Callable, Optional

from errortrack.core.models import Severity
from errortrack.monitoring.logger import get_logger


def _noop() -> None:
    return None


class ExceptHook:
    """sys.excepthook wrapper."""

    component = "sys.excepthook"

    def install(self, tracker) -> Callable[[], None]:
        previous = sys.excepthook
        state = {"active": True}

        def errortrack_excepthook(exc_type, exc_value, exc_tb):
            if state["active"] and exc_type is not None and issubclass(exc_type, Exception):
                if exc_value is not None and exc_value.__traceback__ is None:
                    exc_value = exc_value.with_traceback(exc_tb)
                tracker.capture_error(
                    exc_value if exc_value is not None else exc_type.__name__,
                    context={"component": self.component},
                    severity=Severity.ERROR,
                )
            previous(exc_type, exc_value, exc_tb)

        sys.excepthook = errortrack_excepthook

        def restore() -> None:
            state["active"] = False
            if sys.excepthook is errortrack_excepthook:
                sys.excepthook = previous

        return restore


class ThreadExceptHook:
    """
    threading.excepthook wrapper.

    Runs on the dying thread, so the capture is handed to the tracker's
    owning loop instead of touching the queue from here.
    """

    component = "threading.excepthook"

    def install(self, tracker) -> Callable[[], None]:
        previous = threading.excepthook
        state = {"active": True}

        def errortrack_thread_excepthook(args):
            exc_type = getattr(args, "exc_type", None)
            exc_value = getattr(args, "exc_value", None)
            if state["active"] and exc_type is not None and issubclass(exc_type, Exception):
                thread = getattr(args, "thread", None)
                context = {
                    "component": self.component,
                    "thread": getattr(thread, "name", None),
                }
                tracker.dispatch(partial(
                    tracker.capture_error,
                    exc_value if exc_value is not None else exc_type.__name__,
                    context=context,
                    severity=Severity.ERROR,
                ))
            previous(args)

        threading.excepthook = errortrack_thread_excepthook

        def restore() -> None:
            state["active"] = False
            if threading.excepthook is errortrack_thread_excepthook:
                threading.excepthook = previous

        return restore


class AsyncioHook:
    """
    Exception handler on an asyncio loop (the unhandled-rejection
    surface). Uses the running loop when none is given; without a loop
    there is nothing to hook and install() returns a no-op.
    """

    component = "asyncio"

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop

    def install(self, tracker) -> Callable[[], None]:
        loop = self.loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                get_logger("errortrack.hooks").debug("asyncio_hook_skipped", reason="no running loop")
                return _noop

        previous = loop.get_exception_handler()
        state = {"active": True}

        def errortrack_loop_handler(the_loop, context):
            if state["active"]:
                exc = context.get("exception")
                message = context.get("message")
                tracker.capture_error(
                    exc if exc is not None else (message or "Unhandled asyncio error"),
                    context={"component": self.component, "asyncioMessage": message},
                    severity=Severity.ERROR,
                )
            if previous is not None:
                previous(the_loop, context)
            else:
                the_loop.default_exception_handler(context)

        loop.set_exception_handler(errortrack_loop_handler)

        def restore() -> None:
            state["active"] = False
            if not loop.is_closed() and loop.get_exception_handler() is errortrack_loop_handler:
                loop.set_exception_handler(previous)

        return restore
