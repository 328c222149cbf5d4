"""IMAP mailbox watching: connection, registry, polling, events and mutations."""

from .connection_manager import (
    SEEN,
    ConnectionMetrics,
    ConnectionState,
    FetchedMessage,
    ImapConnection,
    ListedMailbox,
    MailboxLock,
)
from .email_parser import ContentExtractor, EmailAddress, Mail, extract_content
from .events import EventBus, EventKind, Subscription
from .mutations import MutationService
from .poller import MailboxPoller
from .registry import MailboxRegistry
from .selectors import ExplicitIds, FromMessages, MailSelector, resolve_uids
from .supervisor import ConnectionSupervisor
from .sync_state import MIN_WATERMARK, MailboxState, PollResult
from .watcher import MailWatcher

__all__ = [
    "SEEN",
    "ConnectionMetrics",
    "ConnectionState",
    "FetchedMessage",
    "ImapConnection",
    "ListedMailbox",
    "MailboxLock",
    "ContentExtractor",
    "EmailAddress",
    "Mail",
    "extract_content",
    "EventBus",
    "EventKind",
    "Subscription",
    "MutationService",
    "MailboxPoller",
    "MailboxRegistry",
    "ExplicitIds",
    "FromMessages",
    "MailSelector",
    "resolve_uids",
    "ConnectionSupervisor",
    "MIN_WATERMARK",
    "MailboxState",
    "PollResult",
    "MailWatcher",
]
