# ============================================================================
# errortrack -- Validation Failures (errortrack/hooks/validation.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Turns schema-validation errors into a flat issue list and offers a
#   context manager that reports them:
#
#     with validation_guard(tracker, "CheckoutRequest"):
#         CheckoutRequest.model_validate(payload)
#
#   The ValidationError is reported and then re-raised; application
#   control flow does not change.
#
#   pydantic.ValidationError is understood natively (errors() -> loc, msg,
#   type). Other libraries are supported if the error exposes an
#   "issues" list of {path, message, code} dicts.
# ============================================================================

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import pydantic


def _issue(path, message, code) -> Dict[str, Any]:
    if isinstance(path, (list, tuple)):
        path = ".".join(str(p) for p in path)
    return {"path": str(path or ""), "message": str(message or ""), "code": code}


def validation_issues(error) -> List[Dict[str, Any]]:
    """Issue list of a validation error ([] if it has none)."""
    if isinstance(error, pydantic.ValidationError):
        return [
            _issue(item.get("loc", ()), item.get("msg"), item.get("type"))
            for item in error.errors()
        ]
    raw = getattr(error, "issues", None)
    if not isinstance(raw, (list, tuple)):
        return []
    issues = []
    for item in raw:
        if isinstance(item, dict):
            issues.append(_issue(item.get("path", ()), item.get("message"), item.get("code")))
    return issues


@contextmanager
def validation_guard(tracker, schema_name: str, details: Optional[Dict[str, Any]] = None):
    """Report ValueError-family failures (pydantic included), then re-raise."""
    try:
        yield
    except ValueError as e:
        tracker.capture_validation_error(e, schema_name, details)
        raise
