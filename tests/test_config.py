"""Tests for configuration loading from config.ini and WAQ_* variables."""

import pytest

from async_whatsapp_queue.config import QueueConfig, load_config

ENV_VARS = [
    "WAQ_CONFIG",
    "WAQ_LOG_LEVEL",
    "WAQ_HOST",
    "WAQ_PORT",
    "WAQ_API_TOKEN",
    "WAQ_DISPATCH_INTERVAL",
    "WAQ_SEND_TIMEOUT",
    "WAQ_BATCH_SIZE",
    "WAQ_START_ACTIVE",
    "WAQ_TEST_MODE",
    "WAQ_MAX_ATTEMPTS",
    "WAQ_RETRY_BASE_DELAY",
    "WAQ_RETRY_MAX_DELAY",
    "WAQ_GATEWAY_URL",
    "WAQ_GATEWAY_INSTANCE",
    "WAQ_GATEWAY_API_KEY",
    "WAQ_GATEWAY_TIMEOUT",
    "WAQ_LOG_DELIVERY_ACTIVITY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_file(tmp_path):
    config = load_config(tmp_path / "missing.ini")
    default = QueueConfig()

    assert config.timing == default.timing
    assert config.dispatch == default.dispatch
    assert config.retry == default.retry
    assert config.gateway.url is None
    assert config.server.port == 8000
    assert config.log_level == "INFO"
    assert config.dispatch.batch_size == 5
    assert config.timing.dispatch_interval == 2.0
    assert config.timing.send_timeout is None


def test_values_from_ini(tmp_path):
    config_file = tmp_path / "config.ini"
    config_file.write_text("""
[server]
port = 9100
api_token = token

[dispatch]
interval_seconds = 0.5
send_timeout_seconds = 20
batch_size = 10
test_mode = yes

[retry]
max_attempts = 5
base_delay_seconds = 2
max_delay_seconds = 60

[gateway]
url = https://wa-gateway.local
instance = support
api_key = secret

[logging]
level = debug
delivery_activity = true
""")

    config = load_config(config_file)

    assert config.server.port == 9100
    assert config.server.api_token == "token"
    assert config.timing.dispatch_interval == 0.5
    assert config.timing.send_timeout == 20.0
    assert config.dispatch.batch_size == 10
    assert config.dispatch.test_mode is True
    assert config.retry.max_attempts == 5
    assert config.retry.base_delay == 2.0
    assert config.retry.max_delay == 60.0
    assert config.gateway.url == "https://wa-gateway.local"
    assert config.gateway.instance == "support"
    assert config.gateway.api_key == "secret"
    assert config.log_level == "DEBUG"
    assert config.log_delivery_activity is True


def test_environment_is_used_when_option_missing(tmp_path, monkeypatch):
    config_file = tmp_path / "config.ini"
    config_file.write_text("[dispatch]\nbatch_size = 3\n")
    monkeypatch.setenv("WAQ_CONFIG", str(config_file))
    monkeypatch.setenv("WAQ_BATCH_SIZE", "8")
    monkeypatch.setenv("WAQ_MAX_ATTEMPTS", "4")
    monkeypatch.setenv("WAQ_START_ACTIVE", "false")
    monkeypatch.setenv("WAQ_API_TOKEN", "   ")
    monkeypatch.setenv("WAQ_GATEWAY_URL", "http://gw:8080")

    config = load_config()

    assert config.dispatch.batch_size == 3
    assert config.retry.max_attempts == 4
    assert config.dispatch.start_active is False
    assert config.server.api_token is None
    assert config.gateway.url == "http://gw:8080"


def test_invalid_number_raises(tmp_path):
    config_file = tmp_path / "config.ini"
    config_file.write_text("[retry]\nmax_attempts = many\n")
    with pytest.raises(ValueError):
        load_config(config_file)
