# ============================================================================
# errortrack -- Collector Pydantic Models (errortrack/api/models.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Request/response schemas for the bundled collector. The field names
#   are the wire contract (camelCase) that the transmitter produces, so
#   browser clients and this Python client share one endpoint.
#
# INTERNET ACCESS: NONE
# ============================================================================

from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, ConfigDict, Field

MAX_EVENTS_PER_REQUEST = 20


# -------------------------------------------------------------------
# Wire event
# -------------------------------------------------------------------

class BrowserInfo(BaseModel):
    """Environment description attached to each event."""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    version: Optional[str] = None
    os: Optional[str] = None
    userAgent: Optional[str] = Field(None, max_length=500)
    viewport: Optional[Dict[str, int]] = None
    screen: Optional[Dict[str, int]] = None


class WireRequestInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: Optional[str] = Field(None, max_length=500)
    method: Optional[str] = None
    responseStatus: Optional[int] = None
    responseText: Optional[str] = Field(None, max_length=1000)


class SanitizedErrorEvent(BaseModel):
    """One event as sent by a client."""
    model_config = ConfigDict(extra="ignore")

    fingerprint: str = Field(..., min_length=1, max_length=64)
    message: str = Field(..., min_length=1, max_length=1000)
    component: Optional[str] = "unknown"
    severity: Literal["critical", "error", "warning", "info"] = "error"
    stackTrace: Optional[str] = Field(None, max_length=5000)
    context: Dict[str, Any] = Field(default_factory=dict)
    browserInfo: Optional[BrowserInfo] = None
    requestInfo: Optional[WireRequestInfo] = None
    userDescription: Optional[str] = Field(None, max_length=5000)
    sessionId: Optional[str] = None
    timestamp: Optional[int] = None


# -------------------------------------------------------------------
# Request models
# -------------------------------------------------------------------

class ErrorBatchRequest(BaseModel):
    """POST /api/telemetry/errors request body."""
    errors: List[SanitizedErrorEvent] = Field(
        ...,
        min_length=1,
        max_length=MAX_EVENTS_PER_REQUEST,
        description="Up to 20 sanitized error events.",
    )


# -------------------------------------------------------------------
# Response models
# -------------------------------------------------------------------

class BatchAcceptedResponse(BaseModel):
    """POST /api/telemetry/errors response (202)."""
    accepted: int


class RateLimitResponse(BaseModel):
    """429 body. Clients count these toward their circuit breaker."""
    error: str
    retryAfter: str
    circuitBreakerActive: bool = True


class HealthResponse(BaseModel):
    """GET /health response."""
    status: str
    version: str


class RecentErrorsResponse(BaseModel):
    """GET /api/telemetry/errors/recent response."""
    count: int
    errors: List[SanitizedErrorEvent]
