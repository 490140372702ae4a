# ============================================================================
# errortrack -- Diagnostic Output Hooks (errortrack/hooks/console.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Captures warning- and error-level diagnostic output of the host
#   application:
#
#     LoggingHook   a handler on the root logger, WARNING and up
#     WarningsHook  wraps warnings.showwarning
#
#   Records from the pipeline's own loggers ("errortrack.*") are ignored,
#   otherwise a warning logged while sending a batch would be captured,
#   queued, sent, and maybe logged again.
#
# INTERNET ACCESS: NONE
# ============================================================================

from __future__ import annotations

import logging
import warnings
from functools import partial
from typing import Callable, Iterable, Optional

from errortrack.core.models import Severity
from errortrack.monitoring.logger import is_pipeline_logger


class CaptureHandler(logging.Handler):
    """Forward WARNING+ log records to the tracker."""

    def __init__(self, tracker, level: int = logging.WARNING,
                 ignored_loggers: Iterable[str] = ()):
        super().__init__(level)
        self.tracker = tracker
        self.ignored_loggers = set(ignored_loggers)

    def emit(self, record: logging.LogRecord) -> None:
        if is_pipeline_logger(record.name) or record.name in self.ignored_loggers:
            return
        try:
            message = record.getMessage()
            is_error = record.levelno >= logging.ERROR
            context = {
                "component": "logging.error" if is_error else "logging.warning",
                "logger": record.name,
                "source": f"{record.pathname}:{record.lineno}",
            }
            error = message
            if record.exc_info and record.exc_info[1] is not None:
                error = record.exc_info[1]
                context["logMessage"] = message
            self.tracker.dispatch(partial(
                self.tracker.capture_error,
                error,
                context=context,
                severity=Severity.ERROR if is_error else Severity.WARNING,
            ))
        except Exception:
            self.handleError(record)


class LoggingHook:
    def __init__(self, level: int = logging.WARNING,
                 ignored_loggers: Iterable[str] = (),
                 logger: Optional[logging.Logger] = None):
        self.level = level
        self.ignored_loggers = tuple(ignored_loggers)
        self.logger = logger

    def install(self, tracker) -> Callable[[], None]:
        target = self.logger or logging.getLogger()
        handler = CaptureHandler(tracker, self.level, self.ignored_loggers)
        target.addHandler(handler)

        def restore() -> None:
            target.removeHandler(handler)

        return restore


class WarningsHook:
    """warnings.showwarning wrapper. The warning is still shown."""

    component = "warnings"

    def install(self, tracker) -> Callable[[], None]:
        previous = warnings.showwarning
        state = {"active": True}

        def errortrack_showwarning(message, category, filename, lineno, file=None, line=None):
            if state["active"]:
                name = getattr(category, "__name__", "Warning")
                tracker.dispatch(partial(
                    tracker.capture_error,
                    f"{name}: {message}",
                    context={
                        "component": self.component,
                        "category": name,
                        "source": f"{filename}:{lineno}",
                    },
                    severity=Severity.WARNING,
                ))
            previous(message, category, filename, lineno, file, line)

        warnings.showwarning = errortrack_showwarning

        def restore() -> None:
            state["active"] = False
            if warnings.showwarning is errortrack_showwarning:
                warnings.showwarning = previous

        return restore
