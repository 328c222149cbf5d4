"""Delete and flag operations, plus on-demand queries.

Every operation holds the mailbox lock for its whole store conversation and
releases it on every exit path. Deletions publish one ``removed`` event per
UID, in the order the caller gave them, once the lock is released.
"""

from __future__ import annotations

import logging
from typing import List

from .connection_manager import SEEN, ImapConnection, SearchCriteria
from .email_parser import ContentExtractor, Mail
from .events import EventBus
from .registry import FULL_RANGE, search_mailbox
from .selectors import MailSelector, resolve_uids


logger = logging.getLogger(__name__)


class MutationService:
    """Mutations and queries against a single mailbox at a time."""

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

    async def delete_mails(self, mailbox_path: str, selector: MailSelector) -> bool:
        """Delete the selected mails; ``True`` if the server accepted it."""
        uids = resolve_uids(selector)
        lock = await self.connection.get_mailbox_lock(mailbox_path)
        if lock is None:
            return False
        try:
            result = await self.connection.delete_messages(uids)
        finally:
            lock.release()
        if result:
            logger.info(
                f"Deleted {len(uids)} mails from [{mailbox_path}]",
                extra={"mailbox": mailbox_path, "uids": uids},
            )
            for uid in uids:
                self.events.emit_removed(uid)
        return result

    async def see_mails(self, mailbox_path: str, selector: MailSelector) -> bool:
        """Add the ``\\Seen`` flag to the selected mails."""
        uids = resolve_uids(selector)
        lock = await self.connection.get_mailbox_lock(mailbox_path)
        if lock is None:
            return False
        try:
            return await self.connection.add_flags(uids, [SEEN])
        finally:
            lock.release()

    async def unsee_mails(self, mailbox_path: str, selector: MailSelector) -> bool:
        """Remove the ``\\Seen`` flag from the selected mails.

        An empty selection returns ``False`` without contacting the server.
        """
        uids = resolve_uids(selector)
        if not uids:
            return False
        lock = await self.connection.get_mailbox_lock(mailbox_path)
        if lock is None:
            return False
        try:
            return await self.connection.remove_flags(uids, [SEEN])
        finally:
            lock.release()

    # -- queries ------------------------------------------------------------

    async def get_unseen_mails(self, mailbox_path: str) -> List[Mail]:
        return await self._query(mailbox_path, {"seen": False})

    async def get_seen_mails(self, mailbox_path: str) -> List[Mail]:
        return await self._query(mailbox_path, {"seen": True})

    async def get_all_mails(self, mailbox_path: str) -> List[Mail]:
        return await self._query(mailbox_path, FULL_RANGE)

    async def _query(self, mailbox_path: str, criteria: SearchCriteria) -> List[Mail]:
        fetched = await search_mailbox(self.connection, mailbox_path, criteria)
        return [self.extractor.build_mail(mailbox_path, msg) for msg in fetched]


__all__ = ["MutationService"]
