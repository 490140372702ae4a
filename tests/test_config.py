# ============================================================================
# errortrack -- Configuration Tests (tests/test_config.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Tests YAML loading, unknown-key warnings, environment overrides and
#   validate_config().
#
# USAGE:
#   pytest tests/test_config.py -v
#
# INTERNET ACCESS: NONE
# ============================================================================

import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, os.path.dirname(__file__))
import conftest  # noqa: F401

from errortrack.core.config import (
    MAX_WIRE_CHUNK,
    CollectorConfig,
    Config,
    load_config,
    validate_config,
)
from errortrack.core.exceptions import ConfigError
from errortrack.core.tracker import ErrorTracker

PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("ERRORTRACK_ENABLED", "ERRORTRACK_ENDPOINT", "ERRORTRACK_STORAGE_PATH"):
        monkeypatch.delenv(name, raising=False)


def _write_config(tmp_path, text):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "default_config.yaml").write_text(text, encoding="utf-8")
    return str(tmp_path)


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(str(tmp_path))
        assert config.batching.max_queue_size == 10
        assert config.dedup.ttl_seconds == 86400
        assert config.collector.url == "http://127.0.0.1:8000/api/telemetry/errors"

    def test_shipped_config_is_valid(self):
        config = load_config(str(PROJECT_ROOT))
        assert validate_config(config) == []
        assert "/api/threads/by-slug/" in config.filters.ignored_endpoints

    def test_yaml_values_override_defaults(self, tmp_path):
        project = _write_config(tmp_path, (
            "app_name: billing\n"
            "collector:\n"
            "  base_url: https://telemetry.example.com\n"
            "batching:\n"
            "  max_queue_size: 25\n"
            "filters:\n"
            "  ignored_statuses: [422]\n"
        ))
        config = load_config(project)
        assert config.app_name == "billing"
        assert config.collector.url == "https://telemetry.example.com/api/telemetry/errors"
        assert config.batching.max_queue_size == 25
        assert config.batching.flush_delay_seconds == 5
        assert config.filters.ignored_statuses == [422]

    def test_unknown_key_warns_with_suggestion(self, tmp_path, capsys):
        project = _write_config(tmp_path, "collector:\n  timeout: 3\n")
        config = load_config(project)
        err = capsys.readouterr().err
        assert "'timeout' is not a recognized setting" in err
        assert "Did you mean 'timeout_seconds'?" in err
        assert config.collector.timeout_seconds == 10.0

    def test_empty_file_gives_defaults(self, tmp_path):
        project = _write_config(tmp_path, "")
        assert load_config(project).collector.chunk_size == MAX_WIRE_CHUNK


class TestEnvOverrides:
    def test_kill_switch(self, monkeypatch):
        monkeypatch.setenv("ERRORTRACK_ENABLED", "false")
        assert Config().enabled is False

    def test_endpoint_full_url(self, monkeypatch):
        monkeypatch.setenv("ERRORTRACK_ENDPOINT", "https://ingest.example.com/errors")
        assert CollectorConfig().url == "https://ingest.example.com/errors"

    def test_env_beats_yaml(self, tmp_path, monkeypatch):
        project = _write_config(tmp_path, "enabled: true\n")
        monkeypatch.setenv("ERRORTRACK_ENABLED", "0")
        assert load_config(project).enabled is False

    def test_storage_path(self, tmp_path, monkeypatch):
        target = tmp_path / "queue.json"
        monkeypatch.setenv("ERRORTRACK_STORAGE_PATH", str(target))
        assert load_config(str(tmp_path)).storage.path == str(target)


class TestValidateConfig:
    def test_defaults_valid(self):
        assert validate_config(Config()) == []

    def test_chunk_size_over_collector_limit(self):
        config = Config()
        config.collector.chunk_size = MAX_WIRE_CHUNK + 1
        problems = validate_config(config)
        assert len(problems) == 1
        assert "exceeds the collector limit" in problems[0]

    def test_several_problems_reported_together(self):
        config = Config()
        config.batching.max_queue_size = 0
        config.dedup.ttl_seconds = 0
        config.performance.memory_threshold = 1.5
        assert len(validate_config(config)) == 3

    def test_missing_endpoint_only_matters_when_enabled(self):
        config = Config()
        config.collector.base_url = ""
        config.collector.endpoint = ""
        assert validate_config(config)
        config.enabled = False
        assert validate_config(config) == []

    def test_tracker_refuses_invalid_config(self):
        config = Config()
        config.retry.multiplier = 0.5
        with pytest.raises(ConfigError) as info:
            ErrorTracker(config)
        assert info.value.problems
        assert "retry.base_delay_seconds" in info.value.problems[0]
