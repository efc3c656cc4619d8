"""Settings validation — bad stream/backplane config fails at startup."""

import pytest

from ssehub.config import Settings


def test_defaults_are_valid():
    s = Settings(_env_file=None)
    assert s.keepalive_interval_seconds < s.proxy_idle_timeout_seconds
    assert s.backplane == "local"
    assert len(s.instance_id) == 12


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("SSEHUB_KEEPALIVE_INTERVAL_SECONDS", "5")
    monkeypatch.setenv("SSEHUB_BACKPLANE", "redis")
    s = Settings()
    assert s.keepalive_interval_seconds == 5.0
    assert s.backplane == "redis"


@pytest.mark.parametrize(
    "overrides",
    [
        {"keepalive_interval_seconds": 0},
        {"keepalive_interval_seconds": 60, "proxy_idle_timeout_seconds": 60},
        {"backplane": "kafka"},
        {"queue_max_size": -1},
    ],
)
def test_invalid_stream_settings_rejected(overrides):
    with pytest.raises(ValueError):
        Settings(**overrides)


def test_production_requires_real_secret():
    with pytest.raises(ValueError, match="SSEHUB_JWT_SECRET"):
        Settings(environment="production")
    assert Settings(environment="production", jwt_secret="s3cret").environment == "production"
