"""Tests for the YAML settings loader."""
import os
import tempfile

import pytest

from config.settings import (
    DatabaseConfig, ExpiryConfig, QueueConfig, Settings, _expand_env, load_settings,
)


@pytest.fixture
def config_file():
    fd, path = tempfile.mkstemp(suffix=".yaml", prefix="nightlight_settings_")
    os.close(fd)
    yield path
    os.remove(path)


def _write(path, text):
    with open(path, "w") as f:
        f.write(text)


class TestDefaults:
    def test_settings_defaults(self):
        s = Settings()
        assert s.database.store_backend == "memory"
        assert s.queue.backend == "memory"
        assert s.queue.queue_name == "nightlight-queue"
        assert s.expiry.group_expiry_hours == 12
        assert s.notifications.push_enabled is True

    def test_queue_config_redis(self):
        q = QueueConfig(backend="redis", redis_url="redis://cache:6379/1", worker_concurrency=10)
        assert q.redis_url == "redis://cache:6379/1"
        assert q.worker_concurrency == 10


class TestLoadSettings:
    def test_missing_file_gives_defaults(self):
        s = load_settings("/nonexistent/settings.yaml")
        assert s.queue == QueueConfig()

    def test_sections_are_loaded(self, config_file):
        _write(config_file, """
app_name: Nightlight Staging
log_level: DEBUG
database:
  store_backend: file
  store_file_dir: /var/lib/nightlight
queue:
  backend: redis
  poll_interval_ms: 250
expiry:
  reaction_ttl_minutes: 30
""")
        s = load_settings(config_file)
        assert s.app_name == "Nightlight Staging"
        assert s.log_level == "DEBUG"
        assert s.database == DatabaseConfig(store_backend="file", store_file_dir="/var/lib/nightlight")
        assert s.queue.backend == "redis"
        assert s.queue.poll_interval_ms == 250
        assert s.queue.claim_batch_size == 20
        assert s.expiry == ExpiryConfig(group_expiry_hours=12, reaction_ttl_minutes=30)

    def test_unknown_keys_are_ignored(self, config_file):
        _write(config_file, "queue:\n  backend: memory\n  visibility_timeout: 30\n")
        assert load_settings(config_file).queue.backend == "memory"

    def test_env_substitution(self, config_file, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://prod-redis:6379/0")
        _write(config_file, "queue:\n  backend: redis\n  redis_url: ${REDIS_URL}\n")
        assert load_settings(config_file).queue.redis_url == "redis://prod-redis:6379/0"

    def test_config_path_from_environment(self, config_file, monkeypatch):
        _write(config_file, "app_name: From Env\n")
        monkeypatch.setenv("NIGHTLIGHT_CONFIG", config_file)
        assert load_settings().app_name == "From Env"


class TestEnvSubstitution:
    def test_unset_variable_is_left_verbatim(self, monkeypatch):
        monkeypatch.delenv("NIGHTLIGHT_UNSET_VAR", raising=False)
        assert _expand_env("${NIGHTLIGHT_UNSET_VAR}") == "${NIGHTLIGHT_UNSET_VAR}"

    def test_multiple_variables(self, monkeypatch):
        monkeypatch.setenv("HOST", "localhost")
        monkeypatch.setenv("PORT", "6379")
        assert _expand_env("redis://${HOST}:${PORT}") == "redis://localhost:6379"

    def test_fallback_value(self, monkeypatch):
        monkeypatch.delenv("NIGHTLIGHT_UNSET_VAR", raising=False)
        assert _expand_env("${NIGHTLIGHT_UNSET_VAR:-redis://localhost:6379}") == "redis://localhost:6379"

    def test_nested_values(self, monkeypatch):
        monkeypatch.setenv("EXPO_ACCESS_TOKEN", "tok")
        raw = {"notifications": {"expo_access_token": "${EXPO_ACCESS_TOKEN}", "timeout_seconds": 5}}
        assert _expand_env(raw) == {"notifications": {"expo_access_token": "tok", "timeout_seconds": 5}}
