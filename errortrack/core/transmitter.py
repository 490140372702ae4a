# ============================================================================
# errortrack -- Transmitter (errortrack/core/transmitter.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Turns a batch of ErrorEvents into POST requests to the collector and
#   reports, per event, what the collector said.
#
# PIPELINE:
#   1. sanitize()  -- truncate long fields, keep only allow-listed context
#                     keys, recompute a missing fingerprint, camelCase keys
#   2. chunk()     -- slices of collector.chunk_size (20) events
#   3. send()      -- one POST per chunk: {"errors": [...]}
#                     a failed chunk never stops the next one
#   4. outcome     -- each event lands in exactly one bucket:
#                       acknowledged  2xx
#                       overloaded    429
#                       rejected      any other status (logged, dropped)
#                       unreachable   no response at all (network error)
#
#   What to do with each bucket (register, retry, open the breaker) is the
#   tracker's decision, not this file's.
#
# INTERNET ACCESS: POSTs to collector.url only
# ============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from errortrack.core.config import CollectorConfig, LimitsConfig
from errortrack.core.exceptions import CollectorUnreachableError
from errortrack.core.fingerprint import fingerprint as compute_fingerprint
from errortrack.core.models import ErrorEvent
from errortrack.monitoring.logger import get_app_logger, get_error_logger

# Context keys allowed on the wire. Everything else stays local.
SAFE_CONTEXT_KEYS = ("sessionId", "route", "errorType", "component", "userId")


def truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value[:limit] if len(value) > limit else value


def sanitize(event: ErrorEvent,
             limits: LimitsConfig,
             session_id: str = "",
             route: str = "unknown") -> Dict[str, Any]:
    """
    Wire form of one event. Never raises on odd field values; oversized
    fields are cut, not rejected.
    """
    message = event.message or "Unknown error"
    fp = event.fingerprint or compute_fingerprint(
        message, event.component, event.stack_trace
    )
    context = event.context or {}
    event_session = context.get("sessionId") or session_id

    wire_context: Dict[str, Any] = {
        "sessionId": event_session,
        "route": context.get("route") or route,
    }
    for key in SAFE_CONTEXT_KEYS[2:]:
        if context.get(key):
            wire_context[key] = context[key]

    wire: Dict[str, Any] = {
        "fingerprint": fp,
        "message": truncate(message, limits.message),
        "component": event.component or "unknown",
        "severity": getattr(event.severity, "value", event.severity) or "error",
        "stackTrace": truncate(event.stack_trace, limits.stack_trace),
        "context": wire_context,
        "sessionId": event_session,
        "timestamp": int(event.timestamp * 1000),
    }

    env = event.environment
    if env is not None:
        wire["browserInfo"] = {
            "name": env.name,
            "version": env.version,
            "os": env.os,
            "userAgent": truncate(env.user_agent, limits.user_agent),
            "viewport": env.viewport,
            "screen": env.screen,
        }

    req = event.request_info
    if req is not None:
        wire["requestInfo"] = {
            "url": truncate(req.url, limits.request_url),
            "method": req.method,
            "responseStatus": req.response_status,
            "responseText": truncate(req.response_text, limits.response_text),
        }

    if event.user_description:
        wire["userDescription"] = truncate(event.user_description, limits.user_description)

    return wire


def chunk(items: Sequence[Any], size: int) -> List[List[Any]]:
    """Consecutive slices of at most `size` items, order preserved."""
    size = max(1, int(size))
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


@dataclass
class TransmitOutcome:
    """Per-event result of one send() call."""

    acknowledged: List[ErrorEvent] = field(default_factory=list)
    overloaded: List[ErrorEvent] = field(default_factory=list)
    rejected: List[ErrorEvent] = field(default_factory=list)
    unreachable: List[ErrorEvent] = field(default_factory=list)
    chunks: int = 0

    @property
    def all_succeeded(self) -> bool:
        return not (self.overloaded or self.rejected or self.unreachable)

    @property
    def overload_encountered(self) -> bool:
        return bool(self.overloaded)

    @property
    def retryable(self) -> List[ErrorEvent]:
        """Events worth sending again, in their original order."""
        return self.overloaded + self.unreachable


class Transmitter:
    """
    Sends batches to the collector with httpx.AsyncClient.

    transport is any httpx transport. Tests pass httpx.MockTransport; the
    end-to-end tests pass httpx.ASGITransport wrapping the bundled
    collector app.
    """

    def __init__(self,
                 collector: CollectorConfig,
                 limits: LimitsConfig,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.collector = collector
        self.limits = limits
        self._transport = transport
        self.logger = get_app_logger("errortrack.transmitter")
        self.error_logger = get_error_logger("errortrack.errors")

    @property
    def url(self) -> str:
        return self.collector.url

    async def send(self,
                   events: Sequence[ErrorEvent],
                   session_id: str = "",
                   route: str = "unknown") -> TransmitOutcome:
        outcome = TransmitOutcome()
        if not events:
            return outcome

        pairs = [(e, sanitize(e, self.limits, session_id, route)) for e in events]
        parts = chunk(pairs, self.collector.chunk_size)
        outcome.chunks = len(parts)

        self.logger.debug("batch_sending", events=len(pairs), chunks=len(parts))

        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self.collector.timeout_seconds,
            headers=self.collector.headers or None,
        ) as client:
            for index, part in enumerate(parts, start=1):
                originals = [original for original, _ in part]
                payload = {"errors": [wire for _, wire in part]}
                try:
                    response = await self._post_chunk(client, payload)
                except CollectorUnreachableError as e:
                    self.logger.warning(
                        "chunk_unreachable", chunk=index, chunks=len(parts), **e.to_dict()
                    )
                    outcome.unreachable.extend(originals)
                    continue

                if response.is_success:
                    self.logger.debug(
                        "chunk_sent", chunk=index, chunks=len(parts), size=len(originals)
                    )
                    outcome.acknowledged.extend(originals)
                elif response.status_code == 429:
                    self.logger.warning("chunk_rate_limited", chunk=index, chunks=len(parts))
                    outcome.overloaded.extend(originals)
                else:
                    self.error_logger.error(
                        "chunk_rejected",
                        chunk=index,
                        chunks=len(parts),
                        status=response.status_code,
                        detail=_response_detail(response),
                    )
                    outcome.rejected.extend(originals)

        return outcome

    async def _post_chunk(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> httpx.Response:
        try:
            return await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise CollectorUnreachableError(
                f"Cannot reach the error collector: {e}", endpoint=self.url
            ) from e


def _response_detail(response: httpx.Response) -> str:
    """Collector error body for the log: its "error" field, else raw text."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase
