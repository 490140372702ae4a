# ============================================================================
# errortrack -- Transmitter Tests (tests/test_transmitter.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Tests sanitizing, chunking and per-chunk outcome classification
#   against a RecordingCollector served through httpx.MockTransport.
#
# USAGE:
#   pytest tests/test_transmitter.py -v
#
# INTERNET ACCESS: NONE
# ============================================================================

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(__file__))
from conftest import COLLECTOR_BASE, RecordingCollector

from errortrack.core.config import CollectorConfig, LimitsConfig
from errortrack.core.fingerprint import fingerprint
from errortrack.core.models import EnvironmentInfo, ErrorEvent, RequestInfo, Severity
from errortrack.core.transmitter import Transmitter, chunk, sanitize


def _make_event(n=0, **overrides):
    fields = dict(
        fingerprint=f"{n:08x}",
        message=f"failure {n}",
        severity=Severity.ERROR,
        context={"sessionId": "s-1", "route": "worker", "errorType": "api_error"},
        environment=EnvironmentInfo(name="CPython", version="3.12.1", os="Linux",
                                    user_agent="errortrack/1.0.0"),
        timestamp=1_700_000_000.0,
        component="api",
    )
    fields.update(overrides)
    return ErrorEvent(**fields)


def _make_transmitter(collector, **collector_overrides):
    config = CollectorConfig(base_url=COLLECTOR_BASE, endpoint="/api/telemetry/errors")
    for key, value in collector_overrides.items():
        setattr(config, key, value)
    return Transmitter(config, LimitsConfig(), transport=collector.transport)


class TestSanitize:
    def test_truncates_long_fields(self):
        event = _make_event(
            message="m" * 5000,
            stack_trace="s" * 9000,
            environment=EnvironmentInfo(user_agent="u" * 900),
            request_info=RequestInfo(url="/x" * 400, response_text="r" * 3000),
            user_description="d" * 6000,
        )
        wire = sanitize(event, LimitsConfig())
        assert len(wire["message"]) == 1000
        assert len(wire["stackTrace"]) == 5000
        assert len(wire["browserInfo"]["userAgent"]) == 500
        assert len(wire["requestInfo"]["url"]) == 500
        assert len(wire["requestInfo"]["responseText"]) == 1000
        assert len(wire["userDescription"]) == 5000

    def test_context_is_allow_listed(self):
        event = _make_event(context={
            "sessionId": "s-1",
            "route": "worker",
            "errorType": "api_error",
            "userId": "u-42",
            "apiError": {"rawResponse": "secret"},
            "password": "hunter2",
        })
        wire = sanitize(event, LimitsConfig())
        assert wire["context"] == {
            "sessionId": "s-1",
            "route": "worker",
            "errorType": "api_error",
            "userId": "u-42",
        }

    def test_missing_fingerprint_recomputed(self):
        event = _make_event(fingerprint="", message="boom", component="api")
        wire = sanitize(event, LimitsConfig())
        assert wire["fingerprint"] == fingerprint("boom", "api", None)

    def test_fallback_session_and_route(self):
        event = _make_event(context={})
        wire = sanitize(event, LimitsConfig(), session_id="s-fallback", route="cli")
        assert wire["sessionId"] == "s-fallback"
        assert wire["context"]["route"] == "cli"

    def test_wire_keys_are_camel_case(self):
        event = _make_event(request_info=RequestInfo(url="/a", method="GET", response_status=503))
        wire = sanitize(event, LimitsConfig())
        assert wire["severity"] == "error"
        assert wire["requestInfo"]["responseStatus"] == 503
        assert "request_info" not in wire
        assert wire["timestamp"] == 1_700_000_000_000


class TestChunk:
    def test_forty_five_into_twenty_twenty_five(self):
        assert [len(c) for c in chunk(list(range(45)), 20)] == [20, 20, 5]

    def test_order_preserved(self):
        assert chunk([1, 2, 3], 2) == [[1, 2], [3]]

    def test_empty(self):
        assert chunk([], 20) == []


class TestTransmitterSend:
    def test_all_acknowledged(self):
        collector = RecordingCollector()
        events = [_make_event(n) for n in range(3)]
        outcome = asyncio.run(_make_transmitter(collector).send(events, "s-1", "worker"))
        assert outcome.all_succeeded
        assert outcome.acknowledged == events
        assert collector.chunk_sizes == [3]
        assert str(collector.requests[0].url) == COLLECTOR_BASE + "/api/telemetry/errors"

    def test_failed_middle_chunk_does_not_stop_the_rest(self):
        """
        WHAT: 45 events -> chunks 20/20/5; the second chunk gets a 500.
        WHY:  partial success is expected; chunks one and three must still
              be attempted and acknowledged.
        """
        collector = RecordingCollector(statuses=[202, 500, 202])
        events = [_make_event(n) for n in range(45)]
        outcome = asyncio.run(_make_transmitter(collector).send(events))
        assert collector.chunk_sizes == [20, 20, 5]
        assert outcome.chunks == 3
        assert outcome.acknowledged == events[:20] + events[40:]
        assert outcome.rejected == events[20:40]
        assert outcome.retryable == []
        assert not outcome.all_succeeded

    def test_rate_limited_chunk_is_overloaded(self):
        collector = RecordingCollector(statuses=[429])
        events = [_make_event(n) for n in range(2)]
        outcome = asyncio.run(_make_transmitter(collector).send(events))
        assert outcome.overload_encountered
        assert outcome.retryable == events

    def test_unreachable_collector(self):
        collector = RecordingCollector()
        collector.fail = True
        events = [_make_event(n) for n in range(25)]
        outcome = asyncio.run(_make_transmitter(collector).send(events))
        assert len(collector.requests) == 2
        assert outcome.unreachable == events
        assert outcome.acknowledged == []

    def test_custom_headers_sent(self):
        collector = RecordingCollector()
        transmitter = _make_transmitter(collector, headers={"X-App": "billing"})
        asyncio.run(transmitter.send([_make_event()]))
        assert collector.requests[0].headers["X-App"] == "billing"

    def test_empty_batch_sends_nothing(self):
        collector = RecordingCollector()
        outcome = asyncio.run(_make_transmitter(collector).send([]))
        assert collector.requests == []
        assert outcome.all_succeeded
