# ============================================================================
# errortrack -- Structured Logger (errortrack/monitoring/logger.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Sets up local diagnostic logging for the telemetry pipeline. The
#   pipeline reports failures of the HOST application to a collector; this
#   file covers the pipeline's OWN notes (batch sent, duplicate skipped,
#   circuit breaker opened) so an operator can see what it is doing.
#
#   Entries are structured JSON:
#     {"event": "batch_sent", "events": 12, "chunks": 1, "logger": "errortrack.tracker"}
#
# LOGGER NAMES:
#   Every pipeline logger is named "errortrack.<module>". The logging
#   capture hook ignores records from these names, otherwise a warning
#   logged by the pipeline would be captured, queued, and logged again.
#
# LOG FILE TYPES (only when a log_dir is configured):
#   - app_YYYY-MM-DD.log:   pipeline activity
#   - error_YYYY-MM-DD.log: transmission failures and dropped batches
#
# HOW TO USE (from other code):
#   from errortrack.monitoring.logger import get_logger
#   logger = get_logger("errortrack.transmitter")
#   logger.info("chunk_sent", chunk=1, size=20)
#
# DEPENDENCIES:
#   - structlog (built on top of Python's logging module)
#
# INTERNET ACCESS: None -- writes to the console and local files only
# ============================================================================

import sys
import logging
from pathlib import Path
from typing import Optional
import structlog
from datetime import datetime


LOGGER_PREFIX = "errortrack"


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================

class LoggerSetup:
    """Initialize and configure structlog for errortrack"""

    def __init__(self, log_dir: Optional[str] = None):
        self.log_dir = Path(log_dir) if log_dir else None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        self._configured = False
        self._file_handlers = {}

    def set_log_dir(self, log_dir: str) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def setup(self) -> None:
        """Configure structlog with JSON output"""
        if self._configured:
            return

        # Standard logging first (structlog hands records to it)
        logging.basicConfig(
            format="%(message)s",
            stream=sys.stdout,
            level=logging.WARNING,  # Only warnings and above to console
        )

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._configured = True

    def get_logger(self, name: str) -> structlog.BoundLogger:
        """Get a named logger"""
        self.setup()
        return structlog.get_logger(name)

    def get_file_logger(self, name: str, log_type: str = "app") -> structlog.BoundLogger:
        """
        Get a logger that also writes to a dated log file.
        log_type: "app" or "error". Without a log_dir this is get_logger().
        """
        self.setup()
        logger = structlog.get_logger(name)
        if self.log_dir is None:
            return logger

        log_file = self.log_dir / f"{log_type}_{self._get_date_str()}.log"
        key = (name, str(log_file))
        if key in self._file_handlers:
            return logger

        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))

        py_logger = logging.getLogger(name)
        py_logger.addHandler(handler)
        py_logger.setLevel(logging.DEBUG)
        self._file_handlers[key] = handler

        return logger

    @staticmethod
    def _get_date_str() -> str:
        """Get current date as YYYY-MM-DD string"""
        return datetime.now().strftime("%Y-%m-%d")


# ============================================================================
# SINGLETON INSTANCE
# ============================================================================

_logger_setup: Optional[LoggerSetup] = None


def initialize_logging(log_dir: Optional[str] = None) -> LoggerSetup:
    """Initialize logging. Later calls can only add a log_dir."""
    global _logger_setup
    if _logger_setup is None:
        _logger_setup = LoggerSetup(log_dir)
        _logger_setup.setup()
    elif log_dir and _logger_setup.log_dir is None:
        # Console-only logging was set up first (import-time logger)
        _logger_setup.set_log_dir(log_dir)
    return _logger_setup


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger (auto-initializes if needed)"""
    if _logger_setup is None:
        initialize_logging()
    return _logger_setup.get_logger(name)


def get_app_logger(name: str = LOGGER_PREFIX) -> structlog.BoundLogger:
    """Get app logger (writes to app_YYYY-MM-DD.log when log_dir is set)"""
    if _logger_setup is None:
        initialize_logging()
    return _logger_setup.get_file_logger(name, "app")


def get_error_logger(name: str = LOGGER_PREFIX + ".errors") -> structlog.BoundLogger:
    """Get error logger (writes to error_YYYY-MM-DD.log when log_dir is set)"""
    if _logger_setup is None:
        initialize_logging()
    return _logger_setup.get_file_logger(name, "error")


def is_pipeline_logger(name: str) -> bool:
    """True for loggers owned by the pipeline itself."""
    return name == LOGGER_PREFIX or name.startswith(LOGGER_PREFIX + ".")
