"""mailwatch: event-driven watching of IMAP mailboxes."""

from mailwatch.configuration import WatchConfig, load_config
from mailwatch.imap import (
    EventKind,
    ExplicitIds,
    FromMessages,
    Mail,
    MailboxState,
    MailWatcher,
    Subscription,
)

__all__ = [
    "EventKind",
    "ExplicitIds",
    "FromMessages",
    "Mail",
    "MailboxState",
    "MailWatcher",
    "Subscription",
    "WatchConfig",
    "load_config",
]
