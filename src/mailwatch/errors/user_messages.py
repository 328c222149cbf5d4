"""User-friendly error messages for mailwatch.

Human-readable messages and recovery suggestions keyed by error code.
Messages never include credentials or message content.
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Error Message Catalog
# =============================================================================

ERROR_MESSAGES: dict[str, str] = {
    # IMAP errors
    "IMAP_ERROR": "The mail server reported a problem.",
    "IMAP_CONNECTION_ERROR": "Cannot connect to the mail server.",
    "IMAP_TRANSPORT_ERROR": "The connection to the mail server was lost.",
    "IMAP_OPERATION_ERROR": "The mail server rejected the request.",
    "SELECTOR_ERROR": "The mails to act on could not be understood.",
    # Configuration errors
    "CONFIGURATION_ERROR": "There's a configuration issue.",
    "INVALID_CONFIG": "The configuration is invalid. Check settings.",
    "MISSING_CONFIG": "Required configuration is missing.",
    # Generic
    "MAILWATCH_ERROR": "An unexpected error occurred. Please try again.",
    "UNKNOWN_ERROR": "Something went wrong. Please try again.",
}


# =============================================================================
# Recovery Suggestions
# =============================================================================

RECOVERY_SUGGESTIONS: dict[str, str] = {
    "IMAP_ERROR": "Retry the command. If it keeps failing, check the server logs.",
    "IMAP_CONNECTION_ERROR": "Check host, port and credentials, then retry.",
    "IMAP_TRANSPORT_ERROR": "Check your network. The watcher reconnects automatically.",
    "IMAP_OPERATION_ERROR": "Verify the mailbox exists and that the UIDs are valid.",
    "SELECTOR_ERROR": "Pass a list of UIDs or a list of Mail objects.",
    "CONFIGURATION_ERROR": "Check config: mailwatch config show --config <path>",
    "INVALID_CONFIG": "Fix the reported fields in your JSON config file.",
    "MISSING_CONFIG": "Create the config file or pass --config <path>.",
    "MAILWATCH_ERROR": "If this persists, run with logging enabled and report the issue.",
    "UNKNOWN_ERROR": "Run with logging enabled and report the issue if it continues.",
}


# =============================================================================
# Helper Functions
# =============================================================================


def _error_code(error: Any) -> str:
    if hasattr(error, "code"):
        return error.code
    if isinstance(error, str):
        return error
    return type(error).__name__.upper()


def get_user_message(error: Any) -> str:
    """Get user-friendly message for an error.

    Args:
        error: The error (can be Exception or error code string)

    Returns:
        User-friendly error message
    """
    return ERROR_MESSAGES.get(_error_code(error), ERROR_MESSAGES["UNKNOWN_ERROR"])


def get_recovery_suggestion(error: Any) -> str:
    """Get recovery suggestion for an error."""
    return RECOVERY_SUGGESTIONS.get(
        _error_code(error), RECOVERY_SUGGESTIONS["UNKNOWN_ERROR"]
    )


def format_error_for_user(error: Any) -> str:
    """Format a complete user-friendly error message with recovery suggestion."""
    message = get_user_message(error)
    suggestion = get_recovery_suggestion(error)

    return f"{message}\n\nSuggestion: {suggestion}"


def format_error_for_cli(error: Any) -> str:
    """Format error for CLI output.

    Args:
        error: The error to format

    Returns:
        CLI-formatted error message
    """
    message = get_user_message(error)
    suggestion = get_recovery_suggestion(error)
    code = getattr(error, "code", "ERROR")

    lines = [
        f"Error [{code}]: {message}",
        "",
        f"Suggestion: {suggestion}",
    ]

    if getattr(error, "details", None):
        lines.append("")
        lines.append("Details:")
        for key, value in error.details.items():
            # Don't expose secrets
            if key not in ("password", "token", "access_token", "content"):
                lines.append(f"  {key}: {value}")

    return "\n".join(lines)


__all__ = [
    "ERROR_MESSAGES",
    "RECOVERY_SUGGESTIONS",
    "format_error_for_cli",
    "format_error_for_user",
    "get_recovery_suggestion",
    "get_user_message",
]
