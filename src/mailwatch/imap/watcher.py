"""Public entry point: a live, event-driven view of IMAP mailboxes.

Typical use::

    watcher = MailWatcher(load_config(path))
    watcher.on_arrived(lambda mail: print(mail.subject))
    await watcher.run()

``run()`` returns once the first session is up (or a restart has been
scheduled); polling continues in background tasks on the running loop until
``close()`` is awaited.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Mapping, Optional

from mailwatch.configuration import WatchConfig
from mailwatch.logging_setup import configure_logging

from .connection_manager import ImapConnection
from .email_parser import ContentExtractor, Mail
from .events import EventBus, EventKind, MailCallback, Subscription, UidCallback
from .mutations import MutationService
from .poller import MailboxPoller
from .registry import MailboxRegistry
from .selectors import MailSelector
from .supervisor import ConnectionSupervisor
from .sync_state import MailboxState


logger = logging.getLogger(__name__)


class MailWatcher:
    """Watch mailboxes and act on their messages over one IMAP connection."""

    def __init__(
        self,
        config: WatchConfig,
        *,
        connection: Optional[ImapConnection] = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            config: Watcher configuration
            connection: Connection to use instead of one built from ``config``
        """
        self.config = config
        configure_logging(config.logging)

        self.events = EventBus()
        self.connection = connection or ImapConnection(config)
        self.extractor = ContentExtractor(watcher=self)
        self.registry = MailboxRegistry(
            connection=self.connection,
            extractor=self.extractor,
            events=self.events,
        )
        self.poller = MailboxPoller(
            connection=self.connection,
            registry=self.registry,
            extractor=self.extractor,
            events=self.events,
            poll_interval=config.mailboxes_watch_interval,
        )
        self.mutations = MutationService(
            connection=self.connection,
            extractor=self.extractor,
            events=self.events,
        )
        self.supervisor = ConnectionSupervisor(
            config=config,
            connection=self.connection,
            registry=self.registry,
            poller=self.poller,
        )

    # -- lifecycle ------------------------------------------------------------

    async def run(self) -> None:
        """Start watching. Never raises; failures are retried internally."""
        await self.supervisor.start()

    async def close(self) -> None:
        """Stop polling, cancel pending restarts and log out."""
        await self.supervisor.stop()

    @asynccontextmanager
    async def session(self) -> AsyncIterator["MailWatcher"]:
        """Connect for one-off operations without starting the pollers.

        Raises:
            ImapConnectionError: If the connection cannot be established
        """
        await self.connection.connect()
        try:
            yield self
        finally:
            await self.connection.close()

    # -- events ---------------------------------------------------------------

    def on(self, kind: EventKind | str, callback: Callable[[Any], Any]) -> Subscription:
        """Register ``callback`` for ``kind`` (``arrived``, ``removed`` or ``loaded``)."""
        return self.events.subscribe(kind, callback)

    def on_arrived(self, callback: MailCallback) -> Subscription:
        return self.events.on_arrived(callback)

    def on_removed(self, callback: UidCallback) -> Subscription:
        return self.events.on_removed(callback)

    def on_loaded(self, callback: MailCallback) -> Subscription:
        return self.events.on_loaded(callback)

    # -- mutations ------------------------------------------------------------

    async def delete_mails(self, mailbox_path: str, selector: MailSelector) -> bool:
        return await self.mutations.delete_mails(mailbox_path, selector)

    async def see_mails(self, mailbox_path: str, selector: MailSelector) -> bool:
        return await self.mutations.see_mails(mailbox_path, selector)

    async def unsee_mails(self, mailbox_path: str, selector: MailSelector) -> bool:
        return await self.mutations.unsee_mails(mailbox_path, selector)

    # -- queries --------------------------------------------------------------

    async def get_unseen_mails(self, mailbox_path: str) -> List[Mail]:
        return await self.mutations.get_unseen_mails(mailbox_path)

    async def get_seen_mails(self, mailbox_path: str) -> List[Mail]:
        return await self.mutations.get_seen_mails(mailbox_path)

    async def get_all_mails(self, mailbox_path: str) -> List[Mail]:
        return await self.mutations.get_all_mails(mailbox_path)

    def get_mailboxes(self) -> Mapping[str, MailboxState]:
        """Live read-only view of mailbox path -> state."""
        return self.registry.snapshot()


__all__ = ["MailWatcher"]
