# ============================================================================
# errortrack -- Resource Load Hook (errortrack/hooks/resources.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Reports failed loads of static assets (images, scripts, stylesheets,
#   fonts) opened through builtins.open(). The OSError is re-raised
#   unchanged; the caller sees exactly what it would have seen without
#   the hook.
#
#   The capture is handed to the tracker's loop, so opening from a
#   worker thread never touches the pipeline directly.
#
#   Only paths with a known asset extension are reported. A missing
#   config file or data file is an application error, not a broken
#   resource, and is left to the exception hooks.
#
# NOT COVERED:
#   pathlib.Path.open() and io.open() do not go through builtins.open.
# ============================================================================

from __future__ import annotations

import builtins
import functools
import os
from typing import Callable, Optional

ASSET_TYPES = {
    ".png": "image", ".jpg": "image", ".jpeg": "image", ".gif": "image",
    ".svg": "image", ".webp": "image", ".ico": "image",
    ".js": "script", ".mjs": "script",
    ".css": "stylesheet",
    ".woff": "font", ".woff2": "font", ".ttf": "font",
}


def resource_path(file) -> Optional[str]:
    """Path as text, or None for file descriptors and odd objects."""
    if isinstance(file, (str, bytes, os.PathLike)):
        return os.fsdecode(os.fspath(file))
    return None


def resource_type_for(file) -> Optional[str]:
    path = resource_path(file)
    if not path:
        return None
    return ASSET_TYPES.get(os.path.splitext(path)[1].lower())


class ResourceHook:
    def install(self, tracker) -> Callable[[], None]:
        previous = builtins.open
        state = {"active": True}

        @functools.wraps(previous)
        def errortrack_open(file, *args, **kwargs):
            try:
                return previous(file, *args, **kwargs)
            except OSError as e:
                kind = resource_type_for(file) if state["active"] else None
                if kind:
                    tracker.dispatch(functools.partial(
                        tracker.capture_resource_error, resource_path(file), kind,
                        {"errno": e.errno, "reason": e.strerror or str(e)},
                    ))
                raise

        builtins.open = errortrack_open

        def restore() -> None:
            state["active"] = False
            if builtins.open is errortrack_open:
                builtins.open = previous

        return restore
