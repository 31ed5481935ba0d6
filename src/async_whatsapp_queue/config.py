# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration dataclasses and loader for the message queue.

Provides a nested configuration structure for clean parameter organization:
- queue.config.timing.dispatch_interval
- queue.config.dispatch.batch_size
- queue.config.retry.max_attempts

Settings are read from an INI file (default ``config.ini``, overridable
with ``WAQ_CONFIG``). An option present in the file wins; otherwise the
matching environment variable is used, then the built-in default.

Environment variables (all prefixed with WAQ_):
  WAQ_CONFIG - Path to config.ini file (default: config.ini)
  WAQ_LOG_LEVEL - Logging level (default: INFO)
  WAQ_HOST / WAQ_PORT - HTTP server bind address (default: 0.0.0.0:8000)
  WAQ_API_TOKEN - API authentication token
  WAQ_DISPATCH_INTERVAL - Seconds between dispatcher cycles (default: 2.0)
  WAQ_SEND_TIMEOUT - Per-call transport timeout in seconds (default: none)
  WAQ_BATCH_SIZE - Messages dispatched concurrently per cycle (default: 5)
  WAQ_START_ACTIVE - Start the dispatcher with the service (default: True)
  WAQ_TEST_MODE - Dispatcher waits for run-now instead of a timer (default: False)
  WAQ_MAX_ATTEMPTS - Default retry budget per message (default: 3)
  WAQ_RETRY_BASE_DELAY / WAQ_RETRY_MAX_DELAY - Backoff bounds (default: 1.0 / 30.0)
  WAQ_GATEWAY_URL / WAQ_GATEWAY_INSTANCE / WAQ_GATEWAY_API_KEY - HTTP gateway
  WAQ_GATEWAY_TIMEOUT - Gateway HTTP timeout in seconds (default: 15.0)
  WAQ_LOG_DELIVERY_ACTIVITY - Log every delivery outcome at INFO (default: False)

Config file sections/keys:
  [server] host, port, api_token
  [dispatch] interval_seconds, send_timeout_seconds, batch_size, start_active, test_mode
  [retry] max_attempts, base_delay_seconds, max_delay_seconds
  [gateway] url, instance, api_key, timeout_seconds
  [logging] level, delivery_activity
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path

from .retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_DELAY


@dataclass
class TimingConfig:
    """Timing and interval settings."""

    dispatch_interval: float = 2.0
    """Seconds between dispatcher cycles."""

    send_timeout: float | None = None
    """Timeout for a single transport call. None waits indefinitely."""


@dataclass
class DispatchConfig:
    """Dispatcher behaviour."""

    batch_size: int = 5
    """Maximum messages dispatched concurrently in one cycle."""

    start_active: bool = True
    """False starts the queue suspended until ``activate()``."""

    test_mode: bool = False
    """Loop waits for ``run_now()`` instead of the interval timer."""


@dataclass
class RetryConfig:
    """Retry behaviour settings."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    """Attempts allowed for messages enqueued without an explicit budget."""

    base_delay: float = DEFAULT_BASE_DELAY
    """Backoff after the first failure, in seconds (doubles afterwards)."""

    max_delay: float = DEFAULT_MAX_DELAY
    """Backoff ceiling in seconds."""


@dataclass
class GatewayConfig:
    """HTTP WhatsApp gateway settings."""

    url: str | None = None
    instance: str = "default"
    api_key: str | None = None
    timeout: float = 15.0


@dataclass
class ServerConfig:
    """HTTP control API settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    api_token: str | None = None


@dataclass
class QueueConfig:
    """Main configuration container for the message queue.

    Example:
        config = QueueConfig(
            timing=TimingConfig(dispatch_interval=1.0),
            retry=RetryConfig(max_attempts=5),
        )
        queue = AsyncMessageQueue(transport, config=config)
    """

    timing: TimingConfig = field(default_factory=TimingConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    log_level: str = "INFO"
    log_delivery_activity: bool = False
    """Log every delivery outcome at INFO level instead of DEBUG."""


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def load_config(path: str | os.PathLike | None = None) -> QueueConfig:
    """Build a :class:`QueueConfig` from an INI file and ``WAQ_*`` variables.

    Args:
        path: INI file to read. Defaults to ``$WAQ_CONFIG`` or ``config.ini``.
            A missing file is not an error.

    Returns:
        The populated configuration.

    Raises:
        ValueError: If a numeric option cannot be parsed.
    """
    config_path = Path(path or os.getenv("WAQ_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    parser.read(config_path)

    def get(section: str, option: str, env: str) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        return os.getenv(env)

    def get_int(section: str, option: str, env: str, default: int) -> int:
        value = get(section, option, env)
        return default if value is None else int(value)

    def get_float(section: str, option: str, env: str, default: float | None) -> float | None:
        value = get(section, option, env)
        if value is None or not str(value).strip():
            return default
        return float(value)

    api_token = get("server", "api_token", "WAQ_API_TOKEN")
    if isinstance(api_token, str):
        api_token = api_token.strip() or None

    return QueueConfig(
        timing=TimingConfig(
            dispatch_interval=get_float("dispatch", "interval_seconds", "WAQ_DISPATCH_INTERVAL", 2.0),
            send_timeout=get_float("dispatch", "send_timeout_seconds", "WAQ_SEND_TIMEOUT", None),
        ),
        dispatch=DispatchConfig(
            batch_size=get_int("dispatch", "batch_size", "WAQ_BATCH_SIZE", 5),
            start_active=_parse_bool(get("dispatch", "start_active", "WAQ_START_ACTIVE"), True),
            test_mode=_parse_bool(get("dispatch", "test_mode", "WAQ_TEST_MODE"), False),
        ),
        retry=RetryConfig(
            max_attempts=get_int("retry", "max_attempts", "WAQ_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            base_delay=get_float("retry", "base_delay_seconds", "WAQ_RETRY_BASE_DELAY", DEFAULT_BASE_DELAY),
            max_delay=get_float("retry", "max_delay_seconds", "WAQ_RETRY_MAX_DELAY", DEFAULT_MAX_DELAY),
        ),
        gateway=GatewayConfig(
            url=get("gateway", "url", "WAQ_GATEWAY_URL"),
            instance=get("gateway", "instance", "WAQ_GATEWAY_INSTANCE") or "default",
            api_key=get("gateway", "api_key", "WAQ_GATEWAY_API_KEY"),
            timeout=get_float("gateway", "timeout_seconds", "WAQ_GATEWAY_TIMEOUT", 15.0),
        ),
        server=ServerConfig(
            host=get("server", "host", "WAQ_HOST") or "0.0.0.0",
            port=get_int("server", "port", "WAQ_PORT", 8000),
            api_token=api_token,
        ),
        log_level=(get("logging", "level", "WAQ_LOG_LEVEL") or "INFO").upper(),
        log_delivery_activity=_parse_bool(
            get("logging", "delivery_activity", "WAQ_LOG_DELIVERY_ACTIVITY"), False
        ),
    )


__all__ = [
    "DispatchConfig",
    "GatewayConfig",
    "QueueConfig",
    "RetryConfig",
    "ServerConfig",
    "TimingConfig",
    "load_config",
]
