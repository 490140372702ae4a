# ===========================================================================
# errortrack -- TYPED EXCEPTIONS
# ===========================================================================
# FILE: errortrack/core/exceptions.py
#
# WHAT THIS IS:
#   Custom error types for the telemetry pipeline. Each one carries a
#   message, a fix suggestion, and a machine-readable code.
#
# WHERE THEY TRAVEL:
#   These exceptions live INSIDE the pipeline. The transmitter raises
#   CollectorUnreachableError for a chunk that got no HTTP response and
#   catches it per chunk, so the other chunks are still sent. FileStorage
#   raises StorageError and the tracker catches it and carries on without
#   persistence. ConfigError is the one exception a host
#   application sees, and only at construction time, never from a capture
#   call.
#
#   Capture paths themselves never raise. A capture that fails is logged
#   locally and dropped.
#
# HOW IT'S USED:
#     try:
#         response = await self._post_chunk(client, payload)
#     except CollectorUnreachableError as e:
#         logger.warning("chunk_unreachable", **e.to_dict())
#         outcome.unreachable.extend(originals)
# ===========================================================================

from __future__ import annotations


class ErrorTrackError(Exception):
    """
    Base class for all errortrack errors.

    Attributes:
        fix_suggestion (str | None): Human-readable fix instruction.
        error_code (str | None): Machine-readable code like "NET-001".
    """

    def __init__(self, message, fix_suggestion=None, error_code=None):
        self.fix_suggestion = fix_suggestion
        self.error_code = error_code
        super().__init__(message)

    def to_dict(self):
        """Convert to a dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": str(self),
            "fix_suggestion": self.fix_suggestion,
        }


# ---------------------------------------------------------------------------
# CONFIGURATION ERRORS (CONF-xxx)
# ---------------------------------------------------------------------------

class ConfigError(ErrorTrackError):
    """
    Configuration is invalid.

    WHEN YOU'LL SEE THIS:
      - collector.endpoint is empty while telemetry is enabled
      - a size or delay setting is zero or negative
      - collector.chunk_size is larger than the collector accepts (20)
    """
    def __init__(self, message=None, problems=None):
        self.problems = list(problems or [])
        detail = "; ".join(self.problems)
        super().__init__(
            message or f"errortrack configuration is invalid: {detail}",
            fix_suggestion=(
                "Check config/default_config.yaml or the ERRORTRACK_* "
                "environment variables."
            ),
            error_code="CONF-001",
        )


# ---------------------------------------------------------------------------
# NETWORK ERRORS (NET-xxx)
# ---------------------------------------------------------------------------

class CollectorUnreachableError(ErrorTrackError):
    """
    The collector could not be reached at all (no HTTP status).

    WHEN YOU'LL SEE THIS:
      - collector is down or the URL is wrong
      - DNS failure, connection refused, TLS failure
      - request timed out

    The batch that was being sent is re-queued and retried with backoff.
    """
    def __init__(self, message=None, endpoint=None):
        detail = f" Endpoint: {endpoint}" if endpoint else ""
        self.endpoint = endpoint
        super().__init__(
            message or f"Cannot reach the error collector.{detail}",
            fix_suggestion=(
                "Check collector.base_url / collector.endpoint and that the "
                "collector service is running."
            ),
            error_code="NET-001",
        )


# ---------------------------------------------------------------------------
# STORAGE ERRORS (STO-xxx)
# ---------------------------------------------------------------------------

class StorageError(ErrorTrackError):
    """
    The durable queue mirror could not be read or written.

    Persistence is best-effort: the tracker logs this and keeps running
    with the in-memory queue only.
    """
    def __init__(self, message=None, path=None):
        detail = f" Path: {path}" if path else ""
        self.path = path
        super().__init__(
            message or f"Durable queue storage failed.{detail}",
            fix_suggestion=(
                "Check that storage.path is writable, or leave it empty to "
                "keep the pending queue in memory only."
            ),
            error_code="STO-001",
        )
