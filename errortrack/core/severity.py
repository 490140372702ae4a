# ============================================================================
# errortrack -- Severity Classifier (errortrack/core/severity.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Two pure decisions made before an event is queued:
#
#     1. DROP POLICY: is this failure telemetry at all?
#        Expected 404s on allow-listed endpoints, statuses configured as
#        ignored, and known-benign messages (CORS rejections, "user not
#        found") are discarded before classification.
#
#     2. SEVERITY: how much operator attention does it deserve?
#
# HTTP STATUS RULES (first match wins):
#   status >= 500        -> critical
#   status == 429        -> warning   (expected under load)
#   status in (401, 404) -> info      (normal auth-check / navigation outcomes)
#   other 4xx            -> error
#
# NON-NETWORK FAILURES:
#   Default per failure kind (see KIND_SEVERITY). A capture call can still
#   pass an explicit severity.
#
# INTERNET ACCESS: NONE
# ============================================================================

from __future__ import annotations

from typing import Iterable, Optional

from errortrack.core.models import Severity


def classify_http_status(status: int, url: str = "") -> Severity:
    """
    Map an HTTP status code to a severity.

    url is accepted for per-endpoint rules; the current rules depend on
    the status alone.
    """
    if status >= 500:
        return Severity.CRITICAL
    if status == 429:
        return Severity.WARNING
    if status in (401, 404):
        return Severity.INFO
    return Severity.ERROR


# Default severity per failure kind
KIND_SEVERITY = {
    "uncaught": Severity.ERROR,
    "thread": Severity.ERROR,
    "rejection": Severity.ERROR,
    "console_error": Severity.ERROR,
    "console_warning": Severity.WARNING,
    "resource": Severity.ERROR,
    "performance": Severity.WARNING,
    "csp": Severity.ERROR,
    "cors": Severity.ERROR,
    "validation": Severity.WARNING,
    "websocket": Severity.ERROR,
    "websocket_reconnecting": Severity.WARNING,
    "websocket_terminal": Severity.CRITICAL,
    "network": Severity.CRITICAL,
}


def classify_kind(kind: str) -> Severity:
    """Default severity for a non-network failure kind (error if unknown)."""
    return KIND_SEVERITY.get(kind, Severity.ERROR)


def classify_socket_event(event: str, reconnecting: bool = False) -> Severity:
    """
    reconnect_failed is terminal (critical); anything that happens while
    the socket is still reconnecting is a warning; the rest are errors.
    """
    if event == "reconnect_failed":
        return classify_kind("websocket_terminal")
    if reconnecting or event == "reconnect_error":
        return classify_kind("websocket_reconnecting")
    return classify_kind("websocket")


# -------------------------------------------------------------------
# Drop policy
# -------------------------------------------------------------------

class DropPolicy:
    """
    Decides which failures are dropped before classification.

    Each check returns a short reason string when the event should be
    dropped, or None to keep it. The reason goes into a debug log line.
    """

    def __init__(self,
                 ignored_endpoints: Iterable[str] = (),
                 ignored_messages: Iterable[str] = (),
                 ignored_statuses: Iterable[int] = ()):
        self.ignored_endpoints = [p for p in ignored_endpoints if p]
        self.ignored_messages = [m.lower() for m in ignored_messages if m]
        self.ignored_statuses = {int(s) for s in ignored_statuses}

    @classmethod
    def from_config(cls, filters) -> "DropPolicy":
        return cls(
            ignored_endpoints=filters.ignored_endpoints,
            ignored_messages=filters.ignored_messages,
            ignored_statuses=filters.ignored_statuses,
        )

    def check_request(self, url: str, status: int) -> Optional[str]:
        """Drop reason for a failed request, judged on URL and status."""
        if status in self.ignored_statuses:
            return f"ignored_status:{status}"
        if status == 404 and any(p in url for p in self.ignored_endpoints):
            return "expected_404"
        return None

    def check_message(self, message: str) -> Optional[str]:
        """Drop reason for a known-benign message."""
        lowered = (message or "").lower()
        for phrase in self.ignored_messages:
            if phrase in lowered:
                return f"benign_message:{phrase}"
        return None
