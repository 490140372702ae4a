# ============================================================================
# errortrack -- Collector Server (errortrack/api/server.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   A small FastAPI collector that accepts what ErrorTracker sends. It is
#   meant for local development and end-to-end tests: events are kept in
#   memory (last 1000) and nothing is alerted or stored.
#
# USAGE:
#   python -m errortrack.api.server                 # Start on port 8000
#   python -m errortrack.api.server --port 9000     # Custom port
#   python -m errortrack.api.server --host 0.0.0.0  # Expose to network
#
# IN TESTS:
#   app = create_app(rate_limit=3)
#   transport = httpx.ASGITransport(app=app)
#   tracker = ErrorTracker(config, transport=transport)
#
# INTERNET ACCESS: NONE (listens only)
# ============================================================================

from __future__ import annotations

import argparse
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Callable, Deque, Dict, Optional, Tuple

from fastapi import FastAPI

from errortrack.api.models import SanitizedErrorEvent
from errortrack.api.routes import router
from errortrack.monitoring.logger import get_app_logger

logger = get_app_logger("errortrack.api")


# -------------------------------------------------------------------
# Application version
# -------------------------------------------------------------------
APP_VERSION = "1.0.0"

RATE_LIMIT_REQUESTS = 100
RATE_LIMIT_WINDOW_SECONDS = 15 * 60
RECENT_EVENTS = 1000


# -------------------------------------------------------------------
# Shared state (one per app)
# -------------------------------------------------------------------
class AppState:
    """Mutable container for collector state."""

    def __init__(self,
                 rate_limit: int = RATE_LIMIT_REQUESTS,
                 window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
                 clock: Optional[Callable[[], float]] = None,
                 version: str = APP_VERSION):
        self.rate_limit = rate_limit
        self.window_seconds = window_seconds
        self.clock = clock or time.time
        self.version = version
        self.recent: Deque[SanitizedErrorEvent] = deque(maxlen=RECENT_EVENTS)
        self.total_accepted = 0
        # client -> (window start, requests in window)
        self.windows: Dict[str, Tuple[float, int]] = {}

    @property
    def retry_after_text(self) -> str:
        minutes = int(round(self.window_seconds / 60))
        if minutes >= 60 and minutes % 60 == 0:
            hours = minutes // 60
            return f"{hours} hour" + ("s" if hours != 1 else "")
        return f"{minutes} minute" + ("s" if minutes != 1 else "")

    def allow(self, client: str) -> bool:
        """Count one request for `client`. False once over the limit."""
        now = self.clock()
        start, count = self.windows.get(client, (now, 0))
        if now - start >= self.window_seconds:
            start, count = now, 0
        count += 1
        self.windows[client] = (start, count)
        return count <= self.rate_limit


# -------------------------------------------------------------------
# Lifespan: startup and shutdown
# -------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("collector_ready", version=app.state.collector.version)
    yield
    logger.info(
        "collector_stopped", total_accepted=app.state.collector.total_accepted
    )


# -------------------------------------------------------------------
# Create the FastAPI app
# -------------------------------------------------------------------
def create_app(rate_limit: int = RATE_LIMIT_REQUESTS,
               window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
               clock: Optional[Callable[[], float]] = None) -> FastAPI:
    app = FastAPI(
        title="errortrack collector",
        description=(
            "Development collector for errortrack telemetry. Accepts "
            "batches of sanitized error events and keeps the latest in memory."
        ),
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.collector = AppState(rate_limit, window_seconds, clock)
    app.include_router(router)
    return app


app = create_app()


# -------------------------------------------------------------------
# Main entry point
# -------------------------------------------------------------------
def main():
    """Run the collector with uvicorn."""
    import uvicorn

    parser = argparse.ArgumentParser(description="errortrack collector")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Port number")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on changes")
    args = parser.parse_args()

    logger.info("collector_starting", url=f"http://{args.host}:{args.port}")

    uvicorn.run(
        "errortrack.api.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
