# ============================================================================
# errortrack -- Configuration (errortrack/core/config.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Single source of truth for every pipeline setting: where to send
#   events, how big a batch gets, how long dedup remembers a fingerprint,
#   when the circuit breaker opens, which hooks are installed.
#
# HOW IT WORKS:
#   1. Dataclasses define every setting with its default value
#   2. A YAML file (config/default_config.yaml) can override those defaults
#   3. Environment variables can override YAML (machine-specific values)
#
#   Priority: env vars > YAML file > hardcoded defaults
#
# USAGE:
#   from errortrack.core.config import load_config
#   config = load_config(".")
#   print(config.batching.max_queue_size)   # 10
#   print(config.collector.url)             # http://127.0.0.1:8000/api/telemetry/errors
# ============================================================================

from __future__ import annotations

import os
import sys
import yaml
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

# The collector rejects requests with more events than this.
MAX_WIRE_CHUNK = 20


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# -------------------------------------------------------------------
# Sub-configs: each one maps to a section in the YAML file
# -------------------------------------------------------------------

@dataclass
class CollectorConfig:
    """
    Where and how batches are POSTed.

    endpoint may be a full URL or a path joined onto base_url.
    Env override: ERRORTRACK_ENDPOINT.
    """
    base_url: str = "http://127.0.0.1:8000"
    endpoint: str = "/api/telemetry/errors"
    timeout_seconds: float = 10.0
    chunk_size: int = MAX_WIRE_CHUNK      # Events per POST
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        env_endpoint = os.getenv("ERRORTRACK_ENDPOINT")
        if env_endpoint:
            self.endpoint = env_endpoint.strip()

    @property
    def url(self) -> str:
        if self.endpoint.startswith(("http://", "https://")):
            return self.endpoint
        if not self.base_url:
            return self.endpoint
        return self.base_url.rstrip("/") + "/" + self.endpoint.lstrip("/")


@dataclass
class BatchingConfig:
    """
    Queue and flush policy.

    A flush fires immediately once max_queue_size events are pending,
    otherwise flush_delay_seconds after the first queued event.
    """
    max_queue_size: int = 10
    flush_delay_seconds: float = 5.0
    persist_threshold: int = 5        # Mirror the queue to storage at this length


@dataclass
class RetryConfig:
    """Exponential backoff for failed batches: base * multiplier ** attempt."""
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_retries: int = 5


@dataclass
class CircuitBreakerConfig:
    """
    Consecutive 429 responses before transmission stops, and for how long.
    """
    overload_threshold: int = 3
    open_seconds: float = 300.0       # 5 minutes


@dataclass
class DedupConfig:
    """How long a transmitted fingerprint suppresses repeats."""
    ttl_seconds: float = 24 * 60 * 60


@dataclass
class LimitsConfig:
    """Maximum field lengths on the wire (characters)."""
    message: int = 1000
    stack_trace: int = 5000
    user_agent: int = 500
    request_url: int = 500
    response_text: int = 1000
    raw_response: int = 500
    user_description: int = 5000


@dataclass
class FiltersConfig:
    """
    Events that are not telemetry at all, dropped before classification.

    ignored_endpoints: URL substrings whose 404s are expected
                       (e.g. "/api/auth/session", "/api/threads/by-slug/")
    ignored_messages:  known-benign phrases in an API error body
    ignored_statuses:  statuses never reported (e.g. [400, 422])
    """
    ignored_endpoints: List[str] = field(default_factory=list)
    ignored_messages: List[str] = field(default_factory=lambda: [
        "CORS",
        "Not allowed by CORS",
        "user not found",
    ])
    ignored_statuses: List[int] = field(default_factory=list)


@dataclass
class CaptureConfig:
    """Which host surfaces get a capture hook."""
    exceptions: bool = True           # sys.excepthook
    threads: bool = True              # threading.excepthook
    asyncio: bool = True              # loop exception handler
    logging: bool = True              # root logger WARNING+
    warnings: bool = True             # warnings.showwarning
    resources: bool = True            # builtins.open on asset paths
    performance: bool = True          # memory watch + measure()
    security: bool = True             # connect allow-list (needs allowed_hosts)


@dataclass
class PerformanceConfig:
    """Thresholds for performance issues."""
    long_task_ms: float = 100.0
    slow_resource_ms: float = 3000.0
    slow_page_load_ms: float = 5000.0
    memory_threshold: float = 0.9     # Fraction of system memory in use
    memory_check_seconds: float = 30.0


@dataclass
class SecurityConfig:
    """
    Hosts the process may resolve. Empty = no connect policy.
    Localhost and the collector host are always allowed.
    """
    allowed_hosts: List[str] = field(default_factory=list)


@dataclass
class StorageConfig:
    """Durable mirror of the pending queue. Empty path = in memory only."""
    path: str = ""

    def __post_init__(self) -> None:
        env_path = os.getenv("ERRORTRACK_STORAGE_PATH")
        if env_path:
            self.path = env_path
        if self.path:
            self.path = os.path.normpath(os.path.expandvars(os.path.expanduser(self.path)))


@dataclass
class LoggingConfig:
    """Local diagnostic logs. Empty log_dir = console only."""
    log_dir: str = ""


# -------------------------------------------------------------------
# Master Config
# -------------------------------------------------------------------

@dataclass
class Config:
    """
    Master configuration object for errortrack.

    Example:
        config = load_config(".")
        tracker = ErrorTracker(config)
    """
    enabled: bool = True
    app_name: str = "errortrack"
    app_version: str = "1.0.0"

    collector: CollectorConfig = field(default_factory=CollectorConfig)
    batching: BatchingConfig = field(default_factory=BatchingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    filters: FiltersConfig = field(default_factory=FiltersConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self) -> None:
        env_enabled = os.getenv("ERRORTRACK_ENABLED")
        if env_enabled:
            self.enabled = _env_flag(env_enabled)


# -------------------------------------------------------------------
# Helper: YAML dict -> dataclass (with safety net)
# -------------------------------------------------------------------

def _dict_to_dataclass(cls, data: dict):
    """
    Build a dataclass from a dictionary, ignoring unknown keys.

    An unknown key prints a warning to stderr with the closest field
    name, so "timeout" vs "timeout_seconds" does not silently fall back
    to the default.
    """
    known_fields = {f.name for f in dataclasses.fields(cls)}

    filtered = {}
    for k, v in (data or {}).items():
        if k in known_fields:
            filtered[k] = v
        else:
            suggestion = ""
            for field_name in known_fields:
                if k in field_name or field_name in k:
                    suggestion = " Did you mean '" + field_name + "'?"
                    break
            print(
                "  [WARN] config/" + cls.__name__ + ": YAML key '"
                + str(k) + "' is not a recognized setting"
                + " -- IGNORED (using default)." + suggestion,
                file=sys.stderr,
            )

    return cls(**filtered)


_SECTIONS = {
    "collector": CollectorConfig,
    "batching": BatchingConfig,
    "retry": RetryConfig,
    "circuit_breaker": CircuitBreakerConfig,
    "dedup": DedupConfig,
    "limits": LimitsConfig,
    "filters": FiltersConfig,
    "capture": CaptureConfig,
    "performance": PerformanceConfig,
    "security": SecurityConfig,
    "storage": StorageConfig,
    "logging": LoggingConfig,
}


# -------------------------------------------------------------------
# Main entry point: load_config()
# -------------------------------------------------------------------

def load_config(
    project_dir: str = ".",
    config_filename: str = "default_config.yaml",
) -> Config:
    """
    Load configuration from YAML file, with defaults and env var overrides.

    Parameters
    ----------
    project_dir : str
        Folder containing the config/ subfolder.

    config_filename : str
        Name of the YAML config file inside config/.

    Returns
    -------
    Config
        Fully resolved configuration object.
    """
    config_path = Path(project_dir) / "config" / config_filename

    yaml_data: dict = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                yaml_data = raw

    sections = {
        name: _dict_to_dataclass(cls, yaml_data.get(name) or {})
        for name, cls in _SECTIONS.items()
    }
    top_level = {
        key: yaml_data[key]
        for key in ("enabled", "app_name", "app_version")
        if key in yaml_data
    }
    return Config(**top_level, **sections)


def validate_config(config: Config) -> List[str]:
    """
    Check a Config object for problems. Returns a list of error messages.
    Empty list = everything is valid.
    """
    errors: List[str] = []

    if config.enabled and not config.collector.url:
        errors.append(
            "collector.endpoint is empty but telemetry is enabled. "
            "Set collector.endpoint in YAML or ERRORTRACK_ENDPOINT."
        )

    if config.collector.chunk_size < 1:
        errors.append("collector.chunk_size must be at least 1")
    elif config.collector.chunk_size > MAX_WIRE_CHUNK:
        errors.append(
            "collector.chunk_size " + str(config.collector.chunk_size)
            + " exceeds the collector limit of " + str(MAX_WIRE_CHUNK)
        )

    if config.collector.timeout_seconds <= 0:
        errors.append("collector.timeout_seconds must be positive")

    if config.batching.max_queue_size < 1:
        errors.append("batching.max_queue_size must be at least 1")

    if config.batching.flush_delay_seconds < 0:
        errors.append("batching.flush_delay_seconds must not be negative")

    if config.retry.max_retries < 0:
        errors.append("retry.max_retries must not be negative")

    if config.retry.base_delay_seconds <= 0 or config.retry.multiplier < 1:
        errors.append(
            "retry.base_delay_seconds must be positive and retry.multiplier at least 1"
        )

    if config.circuit_breaker.overload_threshold < 1:
        errors.append("circuit_breaker.overload_threshold must be at least 1")

    if config.dedup.ttl_seconds <= 0:
        errors.append("dedup.ttl_seconds must be positive")

    if not 0 < config.performance.memory_threshold <= 1:
        errors.append("performance.memory_threshold must be in (0, 1]")

    return errors
