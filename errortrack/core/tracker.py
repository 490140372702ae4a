# ============================================================================
# errortrack -- Error Tracker (errortrack/core/tracker.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   ErrorTracker is the service object that owns the whole pipeline:
#
#     capture_*()  -->  drop policy  -->  event  -->  dedup  -->  queue
#                                                                   |
#        idle timer (5 s) or queue full (10) ------------------> flush()
#                                                                   |
#     registry <-- acknowledged     transmitter <-- breaker check <--+
#     queue    <-- retryable (front, persisted, backoff retry)
#     dropped  <-- rejected, retries exhausted, breaker opened
#
#   Every piece of state (queue, fingerprint registry, circuit breaker,
#   retry counter, installed hooks) belongs to one instance. Nothing is
#   module-global except the optional get_tracker() convenience.
#
# THE CAPTURE CONTRACT:
#   A capture_* call never raises and never blocks on the network. It
#   runs on the scheduler's loop: inline when called there, handed over
#   from any other thread (see scheduler.py for plain scripts). Any
#   failure inside the pipeline is logged to "errortrack.*" and the event
#   is dropped. A per-thread guard drops captures triggered while a
#   capture is already running, so a bug here cannot recurse.
#
# HOW TO USE:
#   tracker = ErrorTracker(load_config("."))
#   tracker.install_hooks()          # sys/threading/asyncio/logging/...
#   client.request = tracker.wrap_fetch(client.request)
#   ...
#   tracker.close()                  # also runs automatically at exit
#
# INTERNET ACCESS: POSTs batches to collector.url (see transmitter.py)
# ============================================================================

from __future__ import annotations

import asyncio
import atexit
import inspect
import json
import threading
import time
import traceback
from contextlib import contextmanager
from functools import partial, wraps
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from errortrack.core.circuit_breaker import CircuitBreaker
from errortrack.core.config import Config, load_config, validate_config
from errortrack.core.dedup import FingerprintRegistry
from errortrack.core.exceptions import ConfigError, StorageError
from errortrack.core.fingerprint import (
    extract_component_from_stack,
    fingerprint as compute_fingerprint,
)
from errortrack.core.models import (
    ErrorEvent,
    RequestInfo,
    Severity,
    collect_environment_info,
    default_route,
    new_session_id,
)
from errortrack.core.scheduler import AsyncioScheduler, RetryPolicy, Scheduler
from errortrack.core.severity import (
    DropPolicy,
    classify_http_status,
    classify_kind,
    classify_socket_event,
)
from errortrack.core.storage import (
    StoragePort,
    decode_queue,
    encode_queue,
    storage_from_config,
)
from errortrack.core.transmitter import Transmitter, TransmitOutcome
from errortrack.hooks.console import LoggingHook, WarningsHook
from errortrack.hooks.performance import PerformanceMonitor
from errortrack.hooks.realtime import hook_socket
from errortrack.hooks.resources import ResourceHook
from errortrack.hooks.runtime import AsyncioHook, ExceptHook, ThreadExceptHook
from errortrack.hooks.security import SecurityCapture
from errortrack.hooks.validation import validation_issues
from errortrack.monitoring.logger import get_app_logger, initialize_logging


def describe_error(error) -> tuple:
    """(message, stack trace or None) for an exception or plain value."""
    if isinstance(error, BaseException):
        text = str(error)
        name = type(error).__name__
        message = f"{name}: {text}" if text else name
        stack = None
        if error.__traceback__ is not None:
            stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        return message, stack
    if error is None:
        return "Unknown error", None
    message = getattr(error, "message", None) or str(error)
    return message or "Unknown error", None


def _status_text(status: int) -> str:
    if status >= 500:
        return "Server Error"
    if status >= 400:
        return "Client Error"
    return "Unknown"


class ErrorTracker:
    """
    Error telemetry pipeline.

    Collaborators are injectable for tests and embedding:
        storage    -- StoragePort (default from config.storage)
        transport  -- httpx transport for the collector
        scheduler  -- Scheduler (default AsyncioScheduler)
        clock      -- wall clock in seconds (dedup TTL, breaker expiry)
    """

    def __init__(self,
                 config: Optional[Config] = None,
                 storage: Optional[StoragePort] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 scheduler: Optional[Scheduler] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.config = config or Config()
        problems = validate_config(self.config)
        if problems:
            raise ConfigError(problems=problems)

        initialize_logging(self.config.logging.log_dir or None)
        self.logger = get_app_logger("errortrack.tracker")

        self._clock = clock or time.time
        self.session_id = new_session_id()
        self.environment = collect_environment_info(
            self.config.app_name, self.config.app_version
        )
        self._route = default_route()
        self._user_id: Optional[str] = None
        self._enabled = self.config.enabled

        self.registry = FingerprintRegistry(self.config.dedup.ttl_seconds, clock=self._clock)
        self.breaker = CircuitBreaker(
            overload_threshold=self.config.circuit_breaker.overload_threshold,
            open_seconds=self.config.circuit_breaker.open_seconds,
            clock=self._clock,
        )
        self.retry_policy = RetryPolicy.from_config(self.config.retry)
        self.drop_policy = DropPolicy.from_config(self.config.filters)
        self.storage = storage if storage is not None else storage_from_config(self.config.storage)
        self.transmitter = Transmitter(self.config.collector, self.config.limits, transport)
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or AsyncioScheduler()
        self.performance = PerformanceMonitor(self, self.config.performance)

        self._queue: List[ErrorEvent] = []
        self._in_flight: Set[str] = set()
        self._last_event: Optional[ErrorEvent] = None
        self._timer = None
        self._retry_attempt = 0
        self._restore_fns: List[Callable[[], None]] = []
        self._sockets: Dict[int, Callable[[], None]] = {}
        self._atexit_registered = False
        self._closed = False
        self._guard = threading.local()

        self._restore_queue()

    # =================================================================
    # Switches and identity
    # =================================================================

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)

    def is_enabled(self) -> bool:
        return self._enabled

    def set_user_id(self, user_id: Optional[str]) -> None:
        """Attach an identity to later events (not part of the fingerprint)."""
        self._user_id = user_id

    def get_user_id(self) -> Optional[str]:
        return self._user_id

    def set_route(self, route: str) -> None:
        self._route = route or "unknown"

    def get_route(self) -> str:
        return self._route

    @property
    def pending(self) -> List[ErrorEvent]:
        """Snapshot of the pending queue."""
        return list(self._queue)

    # =================================================================
    # Capture API
    # =================================================================

    def capture_error(self, error, context: Optional[Dict[str, Any]] = None,
                      severity=None, user_description: Optional[str] = None) -> None:
        self._submit(self._capture_error, error, context, severity, user_description)

    def capture_api_error(self, url: str, method: str, status: int,
                          response_text: Optional[str] = None,
                          headers: Optional[Dict[str, str]] = None) -> None:
        self._submit(self._capture_api_error, url, method, status, response_text, headers)

    def capture_resource_error(self, url: str, resource_type: str,
                               details: Optional[Dict[str, Any]] = None) -> None:
        self._submit(self._capture_resource_error, url, resource_type, details)

    def capture_websocket_error(self, error, details: Optional[Dict[str, Any]] = None) -> None:
        self._submit(self._capture_websocket_error, error, details)

    def capture_validation_error(self, error, schema_name: str,
                                 details: Optional[Dict[str, Any]] = None) -> None:
        self._submit(self._capture_validation_error, error, schema_name, details)

    def capture_performance_issue(self, issue_type: str, metrics: Optional[Dict[str, Any]] = None) -> None:
        self._submit(self._capture_performance_issue, issue_type, metrics)

    def capture_security_violation(self, violation_type: str,
                                   details: Optional[Dict[str, Any]] = None) -> None:
        self._submit(self._capture_security_violation, violation_type, details)

    def add_user_description(self, text: str) -> bool:
        """
        Attach a user's description to the most recently queued event.
        Returns False if that event has already left the queue.
        """
        event = self._last_event
        if event is None or not any(e is event for e in self._queue):
            return False
        event.user_description = text
        return True

    def dispatch(self, callback: Callable[[], Any]) -> None:
        """Run a capture on the tracker's loop (safe from any thread)."""
        try:
            self.scheduler.call_soon(callback)
        except Exception as e:
            self.logger.warning("dispatch_failed", error=str(e))

    def _submit(self, fn: Callable, *args) -> None:
        """Run a capture on the owning loop. Inline when already there."""
        if not self._enabled:
            return
        self.dispatch(partial(self._guarded, fn, *args))

    def _guarded(self, fn: Callable, *args) -> None:
        if not self._enabled or getattr(self._guard, "active", False):
            return
        self._guard.active = True
        try:
            fn(*args)
        except Exception as e:
            self.logger.warning(
                "capture_failed", error=str(e), error_type=type(e).__name__
            )
        finally:
            self._guard.active = False

    # -- capture implementations (unguarded) --------------------------

    def _capture_error(self, error, context, severity, user_description) -> None:
        message, stack = describe_error(error)
        self._record(
            message,
            severity=Severity.coerce(severity) if severity is not None else Severity.ERROR,
            stack_trace=stack,
            context=context,
            user_description=user_description,
        )

    def _capture_api_error(self, url, method, status, response_text, headers) -> None:
        url = str(url)
        method = (method or "GET").upper()
        status = int(status)

        reason = self.drop_policy.check_request(url, status)
        if reason:
            self.logger.debug("api_error_dropped", reason=reason, url=url, status=status)
            return

        parsed = None
        detail = ""
        if response_text:
            try:
                parsed = json.loads(response_text)
            except ValueError:
                detail = response_text[:200]
            else:
                if isinstance(parsed, dict):
                    for key in ("error", "message", "details", "errorMessage"):
                        if parsed.get(key):
                            detail = parsed[key]
                            break
        if not isinstance(detail, str):
            detail = json.dumps(detail, default=str)

        reason = self.drop_policy.check_message(detail)
        if reason:
            self.logger.debug("api_error_dropped", reason=reason, url=url, status=status)
            return

        if detail:
            message = f"API Error ({status}): {detail} [{method} {url}]"
        else:
            message = f"API Error: {method} {url} returned {status}"

        limits = self.config.limits
        self._record(
            message,
            severity=classify_http_status(status, url),
            component="api",
            context={
                "errorType": "api_error",
                "apiError": {
                    "url": url,
                    "method": method,
                    "status": status,
                    "statusText": _status_text(status),
                    "actualErrorMessage": detail,
                    "parsedResponse": parsed,
                    "rawResponse": response_text[:limits.raw_response] if response_text else None,
                },
            },
            request_info=RequestInfo(
                url=url,
                method=method,
                headers=dict(headers) if headers else None,
                response_status=status,
                response_text=response_text[:limits.response_text] if response_text else None,
            ),
            fingerprint=compute_fingerprint(message, "api", url.split("?")[0]),
        )

    def _capture_resource_error(self, url, resource_type, details) -> None:
        context = {"errorType": "resource", "resourceUrl": url, "resourceType": resource_type}
        context.update(details or {})
        self._record(
            f"Failed to load {resource_type}: {url}",
            severity=classify_kind("resource"),
            component="resource-loader",
            context=context,
        )

    def _capture_websocket_error(self, error, details) -> None:
        details = dict(details or {})
        explicit = details.pop("severity", None)
        if explicit is not None:
            severity = Severity.coerce(explicit)
        else:
            severity = classify_socket_event(
                details.get("event", ""), bool(details.get("reconnecting"))
            )
        if error is None:
            message, stack = "WebSocket connection error", None
        else:
            message, stack = describe_error(error)
        context = {"errorType": "websocket"}
        context.update(details)
        self._record(message, severity=severity, component="websocket",
                     stack_trace=stack, context=context)

    def _capture_validation_error(self, error, schema_name, details) -> None:
        issues = validation_issues(error)
        stack = None
        if issues:
            message = "Validation failed in {}: {}".format(
                schema_name, ", ".join(i["message"] for i in issues)
            )
            validation_details = {"issues": issues, "schema": schema_name}
        else:
            message, stack = describe_error(error) if error else ("Validation error", None)
            validation_details = {"schema": schema_name, "error": repr(error)}
        context = {"errorType": "validation", "validationDetails": validation_details}
        context.update(details or {})
        self._record(message, severity=classify_kind("validation"),
                     component="validation", stack_trace=stack, context=context)

    def _capture_performance_issue(self, issue_type, metrics) -> None:
        self._record(
            f"Performance issue detected: {issue_type}",
            severity=classify_kind("performance"),
            component="performance",
            context={
                "errorType": "performance",
                "issueType": issue_type,
                "performanceMetrics": dict(metrics or {}),
            },
        )

    def _capture_security_violation(self, violation_type, details) -> None:
        details = dict(details or {})
        if violation_type == "csp":
            message = f"CSP violation: {details.get('violatedDirective')}"
            error_type = "csp"
        else:
            message = f"Security violation: {violation_type}"
            error_type = "cors"
        context = {"errorType": error_type, "violationType": violation_type}
        context.update(details)
        self._record(message, severity=classify_kind(error_type),
                     component="security", context=context)

    # =================================================================
    # Event construction, dedup, queueing
    # =================================================================

    def _record(self, message: str, severity: Severity,
                component: Optional[str] = None,
                stack_trace: Optional[str] = None,
                context: Optional[Dict[str, Any]] = None,
                request_info: Optional[RequestInfo] = None,
                user_description: Optional[str] = None,
                fingerprint: Optional[str] = None) -> None:
        extra = dict(context or {})
        extra.pop("sessionId", None)
        component = (
            component
            or extra.get("component")
            or extract_component_from_stack(stack_trace)
        )

        event_context: Dict[str, Any] = {"sessionId": self.session_id, "route": self._route}
        if self._user_id is not None:
            event_context["userId"] = self._user_id
        event_context.update(extra)
        if component:
            event_context.setdefault("component", component)

        event = ErrorEvent(
            fingerprint=fingerprint or compute_fingerprint(message, component, stack_trace),
            message=message,
            severity=severity,
            context=event_context,
            environment=self.environment,
            timestamp=self._clock(),
            component=component,
            stack_trace=stack_trace,
            request_info=request_info,
            user_description=user_description,
        )
        self._enqueue(event)

    def _is_duplicate(self, fp: str) -> bool:
        if self.registry.is_suppressed(fp):
            return True
        if fp in self._in_flight:
            return True
        return any(e.fingerprint == fp for e in self._queue)

    def _enqueue(self, event: ErrorEvent) -> None:
        if self._is_duplicate(event.fingerprint):
            self.logger.debug("duplicate_skipped", fingerprint=event.fingerprint)
            return

        self._queue.append(event)
        self._last_event = event

        batching = self.config.batching
        if len(self._queue) >= batching.persist_threshold:
            self._persist()
        if len(self._queue) >= batching.max_queue_size:
            self._cancel_timer()
            self.scheduler.spawn(self.flush())
        else:
            self._schedule_flush()

    # =================================================================
    # Timers
    # =================================================================

    def _schedule_flush(self) -> None:
        """Idle flush. Never stacks on top of a pending timer."""
        if self._timer is not None or self._closed:
            return
        self._timer = self.scheduler.call_later(
            self.config.batching.flush_delay_seconds, self._on_timer
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        try:
            self.scheduler.spawn(self.flush())
        except Exception as e:
            self.logger.warning("flush_spawn_failed", error=str(e))

    # =================================================================
    # Flush and outcome handling
    # =================================================================

    async def flush(self) -> None:
        """
        Send everything pending. The queue is swapped out before the
        first await, so events captured during the send land in a fresh
        queue.
        """
        self._cancel_timer()
        if not self._queue:
            return

        if self.breaker.is_open():
            self.logger.warning(
                "circuit_breaker_active_queue_cleared",
                dropped=len(self._queue),
                until=self.breaker.state.active_until,
            )
            self._queue = []
            self._clear_storage()
            return

        batch = self._queue
        self._queue = []
        fingerprints = {e.fingerprint for e in batch}
        self._in_flight |= fingerprints
        try:
            outcome = await self.transmitter.send(batch, self.session_id, self._route)
        except Exception as e:
            self.logger.error("flush_failed", error=str(e), error_type=type(e).__name__)
            outcome = TransmitOutcome(unreachable=list(batch))
        finally:
            self._in_flight -= fingerprints

        self._handle_outcome(batch, outcome)

    async def force_flush(self) -> None:
        await self.flush()

    def _handle_outcome(self, batch: List[ErrorEvent], outcome: TransmitOutcome) -> None:
        self.registry.register_all(e.fingerprint for e in outcome.acknowledged)

        if outcome.all_succeeded:
            self._retry_attempt = 0
            self.breaker.record_success()
            self._sync_storage()
            self.logger.info("batch_sent", events=len(batch), chunks=outcome.chunks)
            return

        if outcome.overload_encountered:
            opened = self.breaker.record_overload()
            self.logger.warning(
                "collector_overloaded",
                consecutive=self.breaker.consecutive_overloads,
                threshold=self.breaker.overload_threshold,
            )
            if opened:
                dropped = len(outcome.retryable) + len(self._queue)
                self._queue = []
                self._cancel_timer()
                self._retry_attempt = 0
                self._clear_storage()
                self.logger.error(
                    "circuit_breaker_opened",
                    until=self.breaker.state.active_until,
                    dropped=dropped,
                )
                return
        elif outcome.acknowledged:
            self.breaker.record_success()

        retryable = outcome.retryable
        if not retryable:
            self._sync_storage()
            return

        self._queue = list(retryable) + self._queue
        self._persist()
        self._schedule_retry(retryable)

    def _schedule_retry(self, events: List[ErrorEvent]) -> None:
        if self.retry_policy.exhausted(self._retry_attempt):
            ids = {id(e) for e in events}
            self._queue = [e for e in self._queue if id(e) not in ids]
            self._retry_attempt = 0
            self._sync_storage()
            self.logger.error(
                "batch_dropped", reason="max_retries", events=len(events),
                max_retries=self.retry_policy.max_retries,
            )
            return

        delay = self.retry_policy.delay_for(self._retry_attempt)
        self._retry_attempt += 1
        self.logger.info(
            "batch_retry_scheduled", delay=delay, attempt=self._retry_attempt,
            max_retries=self.retry_policy.max_retries,
        )
        if self._closed:
            return
        self._cancel_timer()
        self._timer = self.scheduler.call_later(delay, self._on_timer)

    # =================================================================
    # Durable mirror
    # =================================================================

    def _storage_failed(self, event: str, error: Exception) -> None:
        # Adapters other than FileStorage may raise anything
        if isinstance(error, StorageError):
            self.logger.warning(event, **error.to_dict())
        else:
            self.logger.warning(event, error=str(error), error_type=type(error).__name__)

    def _persist(self) -> None:
        try:
            self.storage.write(encode_queue(self._queue))
        except Exception as e:
            self._storage_failed("storage_write_failed", e)

    def _clear_storage(self) -> None:
        try:
            self.storage.clear()
        except Exception as e:
            self._storage_failed("storage_clear_failed", e)

    def _sync_storage(self) -> None:
        if self._queue:
            self._persist()
        else:
            self._clear_storage()

    def _restore_queue(self) -> None:
        try:
            data = self.storage.read()
        except Exception as e:
            self._storage_failed("storage_restore_failed", e)
            return
        if data is None:
            return
        try:
            restored = decode_queue(data)
        except Exception as e:
            self._storage_failed("storage_restore_failed", e)
            restored = []
        # Cleared even when undecodable
        self._clear_storage()
        if not restored:
            return
        self._queue = restored + self._queue
        self.logger.info("queue_restored", events=len(restored))
        self._schedule_flush()

    # =================================================================
    # Network wrapper and sockets
    # =================================================================

    def wrap_fetch(self, fn: Callable) -> Callable:
        """
        Wrap a request function shaped like httpx.Client.request:
        fn(method, url, ...) -> httpx.Response (sync or async).

        Responses with status >= 400 are captured as API errors, slow
        responses as performance issues. The response is returned
        unchanged; exceptions are captured and re-raised.
        """
        if inspect.iscoroutinefunction(fn):
            @wraps(fn)
            async def async_wrapped(method, url, *args, **kwargs):
                started = time.perf_counter()
                try:
                    response = await fn(method, url, *args, **kwargs)
                except Exception as e:
                    self._capture_fetch_exception(method, url, e)
                    raise
                self._observe_response(method, url, response, started)
                return response
            return async_wrapped

        @wraps(fn)
        def wrapped(method, url, *args, **kwargs):
            started = time.perf_counter()
            try:
                response = fn(method, url, *args, **kwargs)
            except Exception as e:
                self._capture_fetch_exception(method, url, e)
                raise
            self._observe_response(method, url, response, started)
            return response
        return wrapped

    def _capture_fetch_exception(self, method, url, error: BaseException) -> None:
        self.capture_error(
            error,
            context={"component": "fetch", "url": str(url), "method": str(method).upper()},
            severity=Severity.CRITICAL,
        )

    def _observe_response(self, method, url, response, started: float) -> None:
        # Runs on the caller's request path: nothing may escape
        try:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.performance.check_resource(str(url), elapsed_ms, _content_length(response))
            status = getattr(response, "status_code", None)
            if not isinstance(status, int) or status < 400:
                return
            try:
                text = response.text
            except httpx.ResponseNotRead:
                text = None
            headers = getattr(response, "headers", None)
            self.capture_api_error(str(url), str(method), status, text,
                                   dict(headers) if headers else None)
        except Exception as e:
            self.logger.warning(
                "response_observe_failed", error=str(e), error_type=type(e).__name__
            )

    def hook_socket_errors(self, socket) -> bool:
        """Subscribe to a socket's failure events once. False if already hooked."""
        if socket is None or id(socket) in self._sockets:
            return False
        try:
            self._sockets[id(socket)] = hook_socket(self, socket)
        except Exception as e:
            self.logger.warning("socket_hook_failed", error=str(e))
            return False
        return True

    # =================================================================
    # Performance shortcuts
    # =================================================================

    @contextmanager
    def measure(self, name: str):
        with self.performance.measure(name):
            yield

    def mark_ready(self) -> float:
        return self.performance.mark_ready()

    # =================================================================
    # Hooks and lifecycle
    # =================================================================

    def install_hooks(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Attach every capture hook enabled in config.capture. Calling it
        again while installed is a no-op.
        """
        if self._restore_fns:
            return
        capture = self.config.capture
        hooks: List[Any] = []
        if capture.exceptions:
            hooks.append(ExceptHook())
        if capture.threads:
            hooks.append(ThreadExceptHook())
        if capture.asyncio:
            hooks.append(AsyncioHook(loop))
        if capture.logging:
            hooks.append(LoggingHook(ignored_loggers=("asyncio",) if capture.asyncio else ()))
        if capture.warnings:
            hooks.append(WarningsHook())
        if capture.resources:
            hooks.append(ResourceHook())
        if capture.performance:
            hooks.append(self.performance)
        if capture.security and self.config.security.allowed_hosts:
            hooks.append(SecurityCapture(
                self.config.security.allowed_hosts, self.config.collector.url
            ))

        for hook in hooks:
            try:
                self._restore_fns.append(hook.install(self))
            except Exception as e:
                self.logger.warning(
                    "hook_install_failed", hook=type(hook).__name__, error=str(e)
                )

        if not self._atexit_registered:
            atexit.register(self.close)
            self._atexit_registered = True
        self._closed = False
        self.logger.info("hooks_installed", hooks=len(self._restore_fns))

    def uninstall_hooks(self) -> None:
        """Detach all hooks and sockets, newest first."""
        restore_fns = self._restore_fns
        self._restore_fns = []
        for restore in reversed(restore_fns):
            try:
                restore()
            except Exception as e:
                self.logger.warning("hook_restore_failed", error=str(e))

        sockets = self._sockets
        self._sockets = {}
        for detach in sockets.values():
            try:
                detach()
            except Exception as e:
                self.logger.warning("socket_detach_failed", error=str(e))

        if self._atexit_registered:
            atexit.unregister(self.close)
            self._atexit_registered = False

    def close(self) -> None:
        """
        Teardown: detach hooks, then one last flush on the owning loop
        (the flush cancels any pending timer). Inside a running loop the
        flush is scheduled as a task; use aclose() to wait for it.
        """
        if self._closed:
            return
        self._closed = True
        self.uninstall_hooks()
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            try:
                self.scheduler.run(self.flush())
            except Exception as e:
                self.logger.warning("final_flush_failed", error=str(e))
            if self._owns_scheduler:
                self.scheduler.shutdown()
            return
        self.scheduler.spawn(self.flush())

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.uninstall_hooks()
        await self.flush()


def _content_length(response) -> Optional[int]:
    headers = getattr(response, "headers", None) or {}
    value = headers.get("content-length")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


# -------------------------------------------------------------------
# Optional process-wide instance
# -------------------------------------------------------------------

_tracker: Optional[ErrorTracker] = None


def get_tracker(project_dir: str = ".") -> ErrorTracker:
    """Shared tracker, created from config/default_config.yaml on first use."""
    global _tracker
    if _tracker is None:
        _tracker = ErrorTracker(load_config(project_dir))
    return _tracker


def set_tracker(tracker: Optional[ErrorTracker]) -> Optional[ErrorTracker]:
    """Replace the shared tracker. Returns the previous one."""
    global _tracker
    previous = _tracker
    _tracker = tracker
    return previous
