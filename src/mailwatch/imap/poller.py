"""Interval polling of watched mailboxes.

Each watched mailbox gets one asyncio task: an immediate poll, then a poll
after every ``mailboxes_watch_interval``. A poll fetches the whole UID range,
keeps the UIDs above the watermark, advances the watermark and publishes
``arrived`` events oldest first. Errors never stop the task.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Set

from .connection_manager import ImapConnection
from .email_parser import ContentExtractor, Mail
from .events import EventBus
from .registry import FULL_RANGE, MailboxRegistry, search_mailbox
from .sync_state import MIN_WATERMARK, PollResult


logger = logging.getLogger(__name__)


class MailboxPoller:
    """Poll a fixed set of mailboxes for messages above their watermark."""

    def __init__(
        self,
        *,
        connection: ImapConnection,
        registry: MailboxRegistry,
        extractor: ContentExtractor,
        events: EventBus,
        poll_interval: float,
    ) -> None:
        self.connection = connection
        self.registry = registry
        self.extractor = extractor
        self.events = events
        self.poll_interval = poll_interval
        self._tasks: Dict[str, asyncio.Task[None]] = {}
        self._in_progress: Set[str] = set()

    @property
    def watched(self) -> List[str]:
        return [path for path, task in self._tasks.items() if not task.done()]

    async def start_all(self, paths: Iterable[str]) -> None:
        """Poll each known path once, then keep polling it in the background."""
        for path in paths:
            if path not in self.registry:
                logger.warning(
                    f"Mailbox [{path}] not found on the server, not watching it",
                    extra={"mailbox": path},
                )
                continue
            if path in self._tasks and not self._tasks[path].done():
                logger.debug(f"Mailbox [{path}] is already being watched", extra={"mailbox": path})
                continue
            logger.info(
                f"Watching mailbox [{path}] every {self.poll_interval:g} seconds "
                f"for <{self.connection.config.auth.user}>",
                extra={"mailbox": path},
            )
            await self.poll(path)
            loop = asyncio.get_running_loop()
            self._tasks[path] = loop.create_task(self._poll_loop(path), name=f"poll:{path}")

    async def stop_all(self) -> None:
        """Cancel every poll task and wait for them to finish."""
        tasks, self._tasks = list(self._tasks.values()), {}
        current = asyncio.current_task()
        for task in tasks:
            if task is not current:
                task.cancel()
        for task in tasks:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _poll_loop(self, path: str) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.poll(path)

    async def poll(self, path: str) -> PollResult:
        """Check ``path`` once. Never raises except on cancellation."""
        if path in self._in_progress:
            logger.debug(f"Poll of [{path}] still running, skipping", extra={"mailbox": path})
            return PollResult(path=path, skipped=True, watermark=self._watermark(path))
        state = self.registry.get(path)
        if state is None:
            return PollResult(path=path, skipped=True)

        self._in_progress.add(path)
        try:
            mails = await self._new_mails(path, state.watermark)
            if not mails:
                return PollResult(path=path, watermark=state.watermark)
            watermark = self.registry.advance_watermark(path, mails[-1].uid)
            for mail in mails:
                self.events.emit_arrived(mail)
            return PollResult(
                path=path,
                new_messages=[mail.uid for mail in mails],
                watermark=watermark,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                f"Error while watching [{path}] for <{self.connection.config.auth.user}>, "
                f"but still watching: {exc}",
                extra={"mailbox": path},
            )
            return PollResult(path=path, watermark=self._watermark(path), error=str(exc))
        finally:
            self._in_progress.discard(path)

    async def _new_mails(self, path: str, watermark: int) -> List[Mail]:
        fetched = await search_mailbox(self.connection, path, FULL_RANGE)
        fresh = sorted((msg for msg in fetched if msg.uid > watermark), key=lambda m: m.uid)
        return [self.extractor.build_mail(path, msg) for msg in fresh]

    def _watermark(self, path: str) -> int:
        state = self.registry.get(path)
        return state.watermark if state is not None else MIN_WATERMARK


__all__ = ["MailboxPoller"]
