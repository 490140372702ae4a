# ============================================================================
# errortrack -- Event Data Model (errortrack/core/models.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Defines ErrorEvent, the unit of telemetry, plus the environment and
#   request records attached to it.
#
#   An ErrorEvent is created at capture time, lives in the pending queue
#   (and its durable mirror) until it is sent, and is then discarded.
#
# TWO SERIALIZED FORMS:
#   to_dict() / from_dict()   -- persistence format (snake_case, full data)
#   transmitter.sanitize()    -- wire format (camelCase, truncated,
#                                allow-listed fields only)
#
# INVARIANTS:
#   - severity and context["sessionId"] are always set before an event
#     is queued
#   - fingerprint is a pure function of (message, component, stack excerpt)
# ============================================================================

from __future__ import annotations

import os
import platform
import shutil
import sys
import time
import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from functools import lru_cache
from typing import Optional, Dict, Any


class Severity(str, Enum):
    """
    Severity tiers, highest first.

    str-valued so an event serializes to "critical" etc. without a
    custom encoder.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @classmethod
    def coerce(cls, value, default: "Severity" = None) -> "Severity":
        """Accept a Severity, its string value, or fall back to default."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return default or cls.ERROR


@dataclass
class EnvironmentInfo:
    """
    Static description of the process, attached to every event.

    Serialized on the wire under "browserInfo" to keep the collector
    contract shared with browser clients.
    """
    name: str = ""
    version: str = ""
    os: str = ""
    user_agent: str = ""
    viewport: Optional[Dict[str, int]] = None
    screen: Optional[Dict[str, int]] = None


@dataclass
class RequestInfo:
    """Network metadata. Only set for events from failed requests."""
    url: Optional[str] = None
    method: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    response_status: Optional[int] = None
    response_text: Optional[str] = None


@dataclass
class ErrorEvent:
    """A single captured failure."""

    fingerprint: str
    message: str
    severity: Severity
    context: Dict[str, Any]
    environment: EnvironmentInfo
    timestamp: float
    component: Optional[str] = None
    stack_trace: Optional[str] = None
    request_info: Optional[RequestInfo] = None
    user_description: Optional[str] = None

    @property
    def session_id(self) -> Optional[str]:
        return self.context.get("sessionId")

    def to_dict(self) -> Dict[str, Any]:
        """Persistence form (JSON-safe)."""
        data = asdict(self)
        data["severity"] = self.severity.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorEvent":
        """Rebuild an event from to_dict() output."""
        env = data.get("environment") or {}
        req = data.get("request_info")
        return cls(
            fingerprint=data.get("fingerprint") or "",
            message=data.get("message") or "Unknown error",
            severity=Severity.coerce(data.get("severity")),
            context=dict(data.get("context") or {}),
            environment=EnvironmentInfo(**env),
            timestamp=float(data.get("timestamp") or time.time()),
            component=data.get("component"),
            stack_trace=data.get("stack_trace"),
            request_info=RequestInfo(**req) if req else None,
            user_description=data.get("user_description"),
        )


# -------------------------------------------------------------------
# Session and environment helpers
# -------------------------------------------------------------------

def new_session_id() -> str:
    """<epoch-ms>-<9 hex chars>, one per tracker instance."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def default_route() -> str:
    """Program name of the host process, or "unknown"."""
    argv0 = sys.argv[0] if sys.argv and sys.argv[0] else ""
    return os.path.basename(argv0) or "unknown"


@lru_cache(maxsize=None)
def collect_environment_info(app_name: str = "errortrack",
                             app_version: str = "1.0.0") -> EnvironmentInfo:
    """
    Describe the running interpreter and OS. Cached: the answer does not
    change for the lifetime of the process.
    """
    impl = platform.python_implementation()
    py_version = platform.python_version()
    system = platform.system() or "Unknown"
    release = platform.release()
    user_agent = f"{app_name}/{app_version} ({impl} {py_version}; {system} {release})"

    viewport = None
    size = shutil.get_terminal_size(fallback=(0, 0))
    if size.columns and size.lines:
        viewport = {"width": size.columns, "height": size.lines}

    return EnvironmentInfo(
        name=impl,
        version=py_version,
        os=system,
        user_agent=user_agent,
        viewport=viewport,
    )
