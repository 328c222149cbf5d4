"""Centralized error definitions for mailwatch.

Most failures inside the watcher are absorbed (logged and retried or
degraded). The classes below are what does surface: connection failures in
one-shot sessions, misuse of the mutation API and invalid configuration.

Usage:
    from mailwatch.errors import MailwatchError, format_error_for_user

    try:
        config = load_config(path)
    except MailwatchError as e:
        print(format_error_for_user(e))
"""

from __future__ import annotations

from mailwatch.errors.user_messages import (
    format_error_for_cli,
    format_error_for_user,
    get_recovery_suggestion,
    get_user_message,
)


# =============================================================================
# Base Error
# =============================================================================


class MailwatchError(Exception):
    """Base exception for all mailwatch errors.

    Attributes:
        code: Error code for categorization
        user_message: User-friendly message (optional override)
        recoverable: Whether the error is potentially recoverable
        details: Additional error details for debugging
    """

    code: str = "MAILWATCH_ERROR"
    default_message: str = "An unexpected error occurred"
    recoverable: bool = True

    def __init__(
        self,
        message: str | None = None,
        *,
        user_message: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message or self.default_message
        self._user_message = user_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Get user-friendly message."""
        if self._user_message:
            return self._user_message
        return get_user_message(self)

    @property
    def recovery_suggestion(self) -> str:
        """Get recovery suggestion."""
        return get_recovery_suggestion(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "details": self.details,
        }


# =============================================================================
# IMAP Errors
# =============================================================================


class ImapError(MailwatchError):
    """Base error for IMAP operations."""

    code = "IMAP_ERROR"
    default_message = "IMAP operation failed"


class ImapConnectionError(ImapError):
    """Connecting or authenticating to the IMAP server failed."""

    code = "IMAP_CONNECTION_ERROR"
    default_message = "Cannot connect to the IMAP server"
    recoverable = True


class ImapTransportError(ImapError):
    """The established connection broke while talking to the server."""

    code = "IMAP_TRANSPORT_ERROR"
    default_message = "The IMAP connection was lost"
    recoverable = True


class ImapOperationError(ImapError):
    """The server rejected a command."""

    code = "IMAP_OPERATION_ERROR"
    default_message = "The IMAP server rejected the operation"


class SelectorError(MailwatchError, TypeError):
    """A mail selector could not be turned into a UID list."""

    code = "SELECTOR_ERROR"
    default_message = "Invalid mail selector"
    recoverable = False


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(MailwatchError):
    """Base error for configuration issues."""

    code = "CONFIGURATION_ERROR"
    default_message = "Configuration error"


class InvalidConfigError(ConfigurationError):
    """Configuration is invalid."""

    code = "INVALID_CONFIG"
    default_message = "Invalid configuration"
    recoverable = False


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    code = "MISSING_CONFIG"
    default_message = "Missing required configuration"


__all__ = [
    "MailwatchError",
    "ImapError",
    "ImapConnectionError",
    "ImapTransportError",
    "ImapOperationError",
    "SelectorError",
    "ConfigurationError",
    "InvalidConfigError",
    "MissingConfigError",
    "format_error_for_cli",
    "format_error_for_user",
    "get_recovery_suggestion",
    "get_user_message",
]
