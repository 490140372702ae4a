# ============================================================================
# errortrack -- Connect Policy Observer (errortrack/hooks/security.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Reports name lookups for hosts outside an allow-list, the process
#   equivalent of a Content-Security-Policy connect-src violation.
#
#   Uses a sys.addaudithook() observer of the "socket.getaddrinfo"
#   audit event. Every outbound connection by hostname goes through
#   getaddrinfo, whichever HTTP library makes it.
#
#   Always allowed: localhost, 127.0.0.1, ::1, and the collector host
#   (otherwise reporting a violation would itself be a violation).
#   Allow-list entries may be exact hosts or "*.example.com" wildcards.
#
# IMPORTANT:
#   - Observe only. The lookup is never blocked.
#   - Audit hooks cannot be removed. Uninstall switches this observer
#     off; installing again on the same instance switches it back on.
#   - An exception raised inside an audit hook aborts the audited call,
#     so the hook body catches everything.
# ============================================================================

from __future__ import annotations

import sys
from functools import partial
from typing import Callable, Iterable, Optional

import httpx

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


class SecurityCapture:
    def __init__(self,
                 allowed_hosts: Iterable[str],
                 collector_url: str = "",
                 add_audit_hook: Optional[Callable] = None):
        self.allowed_hosts = {h.strip().lower() for h in allowed_hosts if h and h.strip()}
        self.allowed_hosts |= LOCAL_HOSTS
        collector_host = _host_of(collector_url)
        if collector_host:
            self.allowed_hosts.add(collector_host)
        self._add_audit_hook = add_audit_hook or sys.addaudithook
        self._tracker = None
        self._active = False
        self._registered = False

    def is_allowed(self, host: str) -> bool:
        host = host.strip().lower().rstrip(".")
        if host in self.allowed_hosts:
            return True
        for entry in self.allowed_hosts:
            if entry.startswith("*.") and host.endswith(entry[1:]):
                return True
        return False

    def install(self, tracker) -> Callable[[], None]:
        self._tracker = tracker
        self._active = True
        if not self._registered:
            self._add_audit_hook(self._audit)
            self._registered = True
        return self.uninstall

    def uninstall(self) -> None:
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def _audit(self, event: str, args) -> None:
        if not self._active or event != "socket.getaddrinfo":
            return
        try:
            host, port = args[0], args[1]
            if isinstance(host, (bytes, bytearray)):
                host = bytes(host).decode("ascii", "replace")
            if not host or self.is_allowed(str(host)):
                return
            tracker = self._tracker
            tracker.dispatch(partial(
                tracker.capture_security_violation,
                "csp",
                {
                    "violatedDirective": "connect-src",
                    "blockedURI": f"{host}:{port}" if port else str(host),
                    "host": str(host),
                },
            ))
        except Exception:
            return


def _host_of(url: str) -> Optional[str]:
    if not url:
        return None
    try:
        host = httpx.URL(url).host
    except (httpx.InvalidURL, TypeError, ValueError):
        return None
    return host.lower() if host else None
