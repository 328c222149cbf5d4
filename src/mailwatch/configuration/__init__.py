"""Configuration loading utilities for mailwatch."""

from .settings import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_MAILBOXES_WATCH_INTERVAL_MS,
    DEFAULT_RECONNECT_INTERVAL_MS,
    DEFAULT_SETTLE_DELAY_MS,
    AuthSettings,
    TlsSettings,
    WatchConfig,
    dump_config,
    load_config,
    parse_config,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_MAILBOXES_WATCH_INTERVAL_MS",
    "DEFAULT_RECONNECT_INTERVAL_MS",
    "DEFAULT_SETTLE_DELAY_MS",
    "AuthSettings",
    "TlsSettings",
    "WatchConfig",
    "dump_config",
    "load_config",
    "parse_config",
]
