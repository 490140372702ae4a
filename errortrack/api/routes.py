# ============================================================================
# errortrack -- Collector Routes (errortrack/api/routes.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Endpoints of the bundled development collector.
#
# ENDPOINTS:
#   GET  /health                       Fast health check
#   POST /api/telemetry/errors         Accept a chunk of up to 20 events
#   GET  /api/telemetry/errors/recent  Last accepted events (newest last)
#
# RATE LIMIT:
#   Fixed window per client address: 100 requests per 15 minutes. Past
#   the limit every request gets 429 until the window rolls over. The
#   tracker counts consecutive 429s toward its circuit breaker.
#
# INTERNET ACCESS: NONE
# ============================================================================

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from errortrack.api.models import (
    BatchAcceptedResponse,
    ErrorBatchRequest,
    HealthResponse,
    RateLimitResponse,
    RecentErrorsResponse,
)
from errortrack.monitoring.logger import get_app_logger

logger = get_app_logger("errortrack.api")

router = APIRouter()


def _state(request: Request):
    return request.app.state.collector


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# -------------------------------------------------------------------
# GET /health
# -------------------------------------------------------------------
@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Fast health check. Returns 200 if the server is running."""
    return HealthResponse(status="ok", version=_state(request).version)


# -------------------------------------------------------------------
# POST /api/telemetry/errors
# -------------------------------------------------------------------
@router.post(
    "/api/telemetry/errors",
    status_code=202,
    response_model=BatchAcceptedResponse,
    responses={429: {"model": RateLimitResponse}},
)
async def ingest_errors(batch: ErrorBatchRequest, request: Request):
    """Store a chunk of events. 429 once the client's window is used up."""
    state = _state(request)
    client = _client_key(request)

    if not state.allow(client):
        logger.warning("collector_rate_limited", client=client)
        body = RateLimitResponse(
            error="Too many error reports. Please slow down.",
            retryAfter=state.retry_after_text,
            circuitBreakerActive=True,
        )
        return JSONResponse(status_code=429, content=body.model_dump())

    for event in batch.errors:
        state.recent.append(event)
    state.total_accepted += len(batch.errors)

    logger.info(
        "errors_ingested",
        client=client,
        accepted=len(batch.errors),
        critical=sum(1 for e in batch.errors if e.severity == "critical"),
    )
    return BatchAcceptedResponse(accepted=len(batch.errors))


# -------------------------------------------------------------------
# GET /api/telemetry/errors/recent
# -------------------------------------------------------------------
@router.get("/api/telemetry/errors/recent", response_model=RecentErrorsResponse)
async def recent_errors(request: Request, limit: int = Query(50, ge=1, le=1000)):
    """Most recently accepted events, oldest first."""
    events = list(_state(request).recent)[-limit:]
    return RecentErrorsResponse(count=len(events), errors=events)
