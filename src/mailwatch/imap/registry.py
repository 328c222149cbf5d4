"""Registry of mailboxes and their watermarks.

The registry is the only owner of :class:`MailboxState`. Watermarks change in
two places: the initial full scan (:meth:`MailboxRegistry.load_all`) and the
poller after a successful diff (:meth:`MailboxRegistry.advance_watermark`).
Both go through :meth:`advance_watermark`, which never lowers a watermark.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional

from .connection_manager import FetchedMessage, ImapConnection, SearchCriteria
from .email_parser import ContentExtractor, Mail
from .events import EventBus
from .sync_state import MIN_WATERMARK, MailboxState


logger = logging.getLogger(__name__)

FULL_RANGE = "1:*"


async def search_mailbox(
    connection: ImapConnection,
    path: str,
    criteria: SearchCriteria,
) -> List[FetchedMessage]:
    """Lock ``path``, fetch the messages matching ``criteria``, unlock.

    Returns an empty list when the lock cannot be obtained.
    """
    lock = await connection.get_mailbox_lock(path)
    if lock is None:
        return []
    try:
        return await connection.fetch_messages(criteria)
    finally:
        lock.release()


class MailboxRegistry:
    """Known mailboxes, their watermarks and the startup backlog."""

    def __init__(
        self,
        *,
        connection: ImapConnection,
        extractor: ContentExtractor,
        events: EventBus,
    ) -> None:
        self.connection = connection
        self.extractor = extractor
        self.events = events
        self._mailboxes: Dict[str, MailboxState] = {}
        self._loaded: List[Mail] = []

    # -- read access --------------------------------------------------------

    def __contains__(self, path: object) -> bool:
        return path in self._mailboxes

    def __len__(self) -> int:
        return len(self._mailboxes)

    def paths(self) -> Iterator[str]:
        return iter(list(self._mailboxes))

    def get(self, path: str) -> Optional[MailboxState]:
        return self._mailboxes.get(path)

    def watermark(self, path: str) -> int:
        state = self._mailboxes.get(path)
        if state is None:
            raise KeyError(path)
        return state.watermark

    def snapshot(self) -> Mapping[str, MailboxState]:
        """Live read-only view of path -> state."""
        return MappingProxyType(self._mailboxes)

    @property
    def pending_loaded(self) -> int:
        return len(self._loaded)

    # -- updates --------------------------------------------------------------

    def advance_watermark(self, path: str, uid: int) -> int:
        """Raise the watermark of ``path`` to ``uid`` if that is higher.

        Creates the state on first use. Returns the resulting watermark.
        """
        state = self._mailboxes.get(path)
        if state is None:
            state = MailboxState(path=path, watermark=max(MIN_WATERMARK, uid))
            self._mailboxes[path] = state
        elif uid > state.watermark:
            state.watermark = uid
        return state.watermark

    async def load_all(self) -> None:
        """Scan every mailbox on the server and seed its watermark.

        Mailboxes are scanned one after another since they share the
        connection. Every message found is queued for the ``loaded`` event.
        """
        listed = await self.connection.list_mailboxes()
        for mailbox in listed:
            if not mailbox.selectable:
                logger.debug(
                    f"Skipping non-selectable mailbox {mailbox.path}",
                    extra={"mailbox": mailbox.path},
                )
                continue
            await self._scan(mailbox.path)
        logger.info(
            f"Loaded {len(self._mailboxes)} mailboxes for <{self.connection.config.auth.user}>",
            extra={"mailboxes": len(self._mailboxes), "pending_loaded": len(self._loaded)},
        )

    async def _scan(self, path: str) -> None:
        highest = MIN_WATERMARK
        for msg in await search_mailbox(self.connection, path, FULL_RANGE):
            if msg.uid > highest:
                highest = msg.uid
            self._loaded.append(self.extractor.build_mail(path, msg))
        self.advance_watermark(path, highest)

    def flush_loaded(self) -> int:
        """Emit one ``loaded`` event per queued mail and clear the queue."""
        batch, self._loaded = self._loaded, []
        for mail in batch:
            self.events.emit_loaded(mail)
        if batch:
            logger.info(f"Emitted {len(batch)} loaded mails", extra={"loaded": len(batch)})
        return len(batch)

    def clear_loaded(self) -> None:
        self._loaded.clear()


__all__ = ["FULL_RANGE", "MailboxRegistry", "search_mailbox"]
