# ============================================================================
# errortrack -- Realtime Socket Hook (errortrack/hooks/realtime.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Subscribes to the failure events of a realtime connection object
#   (anything with on(event, handler), e.g. a python-socketio client)
#   and reports them as websocket errors.
#
#   event              severity
#   -----------------  --------------------------------------
#   connect_error      error (warning while reconnecting)
#   connect_timeout    error
#   error              error
#   reconnect_error    warning
#   reconnect_failed   critical
#
#   The tracker keeps one subscription per socket object, so hooking the
#   same socket twice is a no-op.
# ============================================================================

from __future__ import annotations

from typing import Callable, Dict

SOCKET_EVENTS = (
    "connect_error",
    "connect_timeout",
    "error",
    "reconnect_error",
    "reconnect_failed",
)

_DEFAULT_MESSAGES = {
    "connect_timeout": "Socket connection timeout",
    "reconnect_failed": "Socket reconnection failed",
}


def socket_id(socket):
    return getattr(socket, "sid", None) or getattr(socket, "id", None)


def hook_socket(tracker, socket) -> Callable[[], None]:
    """Subscribe to every failure event. Returns the detach function."""
    handlers: Dict[str, Callable] = {}

    def make_handler(event: str) -> Callable:
        def handler(*args):
            error = args[0] if args else None
            if error is None:
                error = _DEFAULT_MESSAGES.get(event)
            details = {"event": event, "socketId": socket_id(socket)}
            if event == "reconnect_error":
                details["reconnecting"] = True
            elif event == "connect_error" and getattr(socket, "reconnecting", False):
                details["reconnecting"] = True
            tracker.capture_websocket_error(error, details)
        return handler

    for event in SOCKET_EVENTS:
        handler = make_handler(event)
        socket.on(event, handler)
        handlers[event] = handler

    def detach() -> None:
        off = getattr(socket, "off", None)
        if not callable(off):
            return
        for event, handler in handlers.items():
            off(event, handler)

    return detach
