"""Typed configuration for the mailbox watcher.

The watcher is configured through a single :class:`WatchConfig` model. It is
frozen after validation so that none of the runtime components can mutate
it. Configuration files are plain JSON; credentials may be supplied through
environment variables instead of being written to disk.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator

from mailwatch.errors import InvalidConfigError, MissingConfigError


DEFAULT_CONFIG_PATH = Path.home() / ".mailwatch" / "config.json"

DEFAULT_RECONNECT_INTERVAL_MS = 60 * 1000
DEFAULT_MAILBOXES_WATCH_INTERVAL_MS = 60 * 1000
DEFAULT_SETTLE_DELAY_MS = 1000


class AuthSettings(BaseModel):
    """Credentials for the IMAP login."""

    model_config = ConfigDict(frozen=True)

    user: str = Field(..., min_length=1, description="Login name, usually the email address")
    password: Optional[SecretStr] = Field(default=None, description="Password or app password")
    access_token: Optional[SecretStr] = Field(
        default=None, description="OAuth2 access token (XOAUTH2)"
    )

    @model_validator(mode="after")
    def _require_secret(self) -> "AuthSettings":
        if self.password is None and self.access_token is None:
            raise ValueError("auth requires either password or access_token")
        return self


class TlsSettings(BaseModel):
    """TLS parameters for the IMAP socket."""

    model_config = ConfigDict(frozen=True)

    verify: bool = Field(True, description="Verify the server certificate and hostname")
    min_version: Literal["TLSv1_2", "TLSv1_3"] = Field(
        "TLSv1_2", description="Minimum accepted TLS version"
    )
    ca_file: Optional[Path] = Field(
        default=None, description="CA bundle to trust instead of certifi's"
    )


class WatchConfig(BaseModel):
    """Runtime configuration for a mailbox watcher."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., min_length=1, description="IMAP hostname")
    port: int = Field(993, ge=1, le=65535, description="IMAP port")
    secure: bool = Field(True, description="Connect over implicit TLS")
    auth: AuthSettings
    tls: TlsSettings = Field(default_factory=TlsSettings)
    timeout: float = Field(30.0, gt=0, description="Socket timeout in seconds")
    logging: bool = Field(False, description="Emit log records to the console")
    reconnect_interval_ms: int = Field(
        DEFAULT_RECONNECT_INTERVAL_MS,
        ge=0,
        description="Delay before a full restart after a connection failure",
    )
    mailboxes_to_watch: List[str] = Field(
        default_factory=list, description="Mailbox paths polled for new mail"
    )
    mailboxes_watch_interval_ms: int = Field(
        DEFAULT_MAILBOXES_WATCH_INTERVAL_MS,
        gt=0,
        description="Delay between two polls of the same mailbox",
    )
    settle_delay_ms: int = Field(
        DEFAULT_SETTLE_DELAY_MS,
        ge=0,
        description="Delay after startup before the loaded batch is emitted",
    )

    @property
    def reconnect_interval(self) -> float:
        return self.reconnect_interval_ms / 1000

    @property
    def mailboxes_watch_interval(self) -> float:
        return self.mailboxes_watch_interval_ms / 1000

    @property
    def settle_delay(self) -> float:
        return self.settle_delay_ms / 1000


def load_config(path: Path = DEFAULT_CONFIG_PATH, *, apply_env: bool = True) -> WatchConfig:
    """Load a watcher configuration from a JSON file.

    Raises:
        MissingConfigError: If the file does not exist
        InvalidConfigError: If the file is not valid JSON or fails validation
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise MissingConfigError(
            f"Config file not found at {path}", details={"path": str(path)}
        )
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidConfigError(
            f"Config file {path} is not valid JSON: {exc}", details={"path": str(path)}
        ) from exc
    if apply_env:
        payload = _apply_env_overrides(payload)
    return parse_config(payload)


def parse_config(payload: Dict[str, Any]) -> WatchConfig:
    """Validate a raw mapping into a :class:`WatchConfig`."""
    try:
        return WatchConfig.model_validate(payload)
    except ValidationError as exc:
        raise InvalidConfigError(f"Invalid configuration: {exc}") from exc


def dump_config(config: WatchConfig) -> Dict[str, Any]:
    """Return a JSON-ready mapping of the configuration with secrets masked."""
    payload = config.model_dump(mode="json")
    auth = payload.get("auth", {})
    for key in ("password", "access_token"):
        if auth.get(key):
            auth[key] = "***"
    return payload


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data)
    auth = dict(data.get("auth") or {})
    _set_env_override(data, "host", "MAILWATCH_HOST")
    _set_env_override(data, "port", "MAILWATCH_PORT", cast_int=True)
    _set_env_override(data, "logging", "MAILWATCH_LOGGING", cast_bool=True)
    _set_env_override(auth, "user", "MAILWATCH_USER")
    _set_env_override(auth, "password", "MAILWATCH_PASSWORD")
    _set_env_override(auth, "access_token", "MAILWATCH_ACCESS_TOKEN")
    data["auth"] = auth
    return data


def _set_env_override(
    mapping: Dict[str, Any],
    key: str,
    env_name: str,
    *,
    cast_bool: bool = False,
    cast_int: bool = False,
) -> None:
    raw = os.getenv(env_name)
    if raw is None:
        return
    if cast_bool:
        mapping[key] = raw.lower() in {"1", "true", "yes"}
    elif cast_int:
        mapping[key] = int(raw)
    else:
        mapping[key] = raw
