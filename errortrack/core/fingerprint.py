# ============================================================================
# errortrack -- Fingerprint Engine (errortrack/core/fingerprint.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Turns (message, component, stack trace) into a short, stable ID for
#   the root cause of a failure. The deduplicator uses it to tell "the
#   same error again" apart from "a new error".
#
# ALGORITHM:
#   1. Strip query strings from URLs in the message, so
#        "404 [GET /page?_rsc=1r34m]" and "404 [GET /page?_rsc=9zz]"
#      collapse into "404 [GET /page]"
#   2. Keep at most the first 4 lines of the stack trace
#   3. Join: "<message>|<component or 'unknown'>|<stack excerpt>"
#   4. 32-bit rolling hash: h = (h << 5) - h + ord(c), kept in signed
#      32-bit range after each step
#   5. abs(h) as lowercase hex, zero-padded to 8 characters
#
#   Not cryptographic. Same input -> same output, in every process.
#
# INTERNET ACCESS: NONE
# ============================================================================

from __future__ import annotations

import re
from typing import Optional

_QUERY_STRING = re.compile(r"\?[^\s\]]+")

# Python traceback frame line: File "app/views.py", line 42, in render_page
_FRAME_LINE = re.compile(r'File "[^"]+", line \d+, in (\S+)')

STACK_EXCERPT_LINES = 4


def normalize_message(message: str) -> str:
    """Remove URL query strings from a message."""
    return _QUERY_STRING.sub("", message or "")


def stack_excerpt(stack_trace: Optional[str], lines: int = STACK_EXCERPT_LINES) -> str:
    """First `lines` lines of a stack trace ("" when there is none)."""
    if not stack_trace:
        return ""
    return "\n".join(stack_trace.split("\n")[:lines])


def _rolling_hash(data: str) -> int:
    h = 0
    for ch in data:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    # Back to signed 32-bit
    if h & 0x80000000:
        h -= 0x100000000
    return h


def fingerprint(message: str,
                component: Optional[str] = None,
                stack_trace: Optional[str] = None) -> str:
    """
    Stable identity for a failure.

    >>> fingerprint("boom", "api") == fingerprint("boom", "api")
    True
    """
    data = "|".join((
        normalize_message(message),
        component or "unknown",
        stack_excerpt(stack_trace),
    ))
    return format(abs(_rolling_hash(data)), "x").zfill(8)


def extract_component_from_stack(stack_trace: Optional[str]) -> Optional[str]:
    """
    Name of the function in the innermost frame of a Python traceback,
    or None if the text has no frame lines.
    """
    if not stack_trace:
        return None
    frames = _FRAME_LINE.findall(stack_trace)
    if not frames:
        return None
    return frames[-1]
