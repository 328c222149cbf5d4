"""Startup sequence and reconnection for the watcher.

:meth:`ConnectionSupervisor.start` brings a session up: connect, attach the
transport-error handler, scan all mailboxes, start the pollers and schedule
the emission of the startup backlog. Any failure schedules a full restart
after ``reconnect_interval``; nothing is raised to the caller and retries
never stop.

The supervisor owns every piece of scheduled work of a session (poll tasks,
the backlog flush, the pending restart) and cancels all of it before a new
session starts, so repeated reconnects never stack up pollers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from mailwatch.configuration import WatchConfig

from .connection_manager import ImapConnection
from .events import Subscription
from .poller import MailboxPoller
from .registry import MailboxRegistry


logger = logging.getLogger(__name__)


def _current_task() -> Optional[asyncio.Task[object]]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class ConnectionSupervisor:
    """Own the connection lifecycle and all session-scoped timers."""

    def __init__(
        self,
        *,
        config: WatchConfig,
        connection: ImapConnection,
        registry: MailboxRegistry,
        poller: MailboxPoller,
    ) -> None:
        self.config = config
        self.connection = connection
        self.registry = registry
        self.poller = poller
        self.restart_count = 0
        self._timers: Set[asyncio.Task[None]] = set()
        self._restart_task: Optional[asyncio.Task[None]] = None
        self._error_subscription: Optional[Subscription] = None
        self._stopped = False

    @property
    def restart_pending(self) -> bool:
        task = self._restart_task
        if task is None or task.done():
            return False
        # A restart that is already running start() may schedule the next one.
        return task is not _current_task()

    async def start(self) -> None:
        """Run the full startup sequence. Never raises."""
        self._stopped = False
        await self._start_session()

    async def _start_session(self) -> None:
        await self._cancel_session()

        try:
            await self.connection.connect()
        except Exception as exc:  # noqa: BLE001
            logger.error(
                f"Could not connect to <{self.config.auth.user}>, check credentials and host",
                extra={"host": self.config.host, "error": str(exc)},
            )
            self.schedule_restart()
            return
        if await self._abandon_if_stopped():
            return

        self._error_subscription = self.connection.on_error(self._on_transport_error)

        try:
            await self.registry.load_all()
            if await self._abandon_if_stopped():
                return
            await self.poller.start_all(dict.fromkeys(self.config.mailboxes_to_watch))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                f"Startup failed for <{self.config.auth.user}>: {exc}",
                exc_info=exc,
                extra={"host": self.config.host},
            )
            self.schedule_restart()
            return
        if await self._abandon_if_stopped():
            return

        self._schedule(self.config.settle_delay, self._flush_loaded, name="flush-loaded")

    async def _abandon_if_stopped(self) -> bool:
        """Tear down a startup that :meth:`stop` overtook while it was awaiting."""
        if not self._stopped:
            return False
        logger.info(
            f"Startup for <{self.config.auth.user}> abandoned, watcher was stopped",
            extra={"host": self.config.host},
        )
        await self._cancel_session()
        await self.connection.close()
        return True

    async def stop(self) -> None:
        """Cancel all scheduled work and close the connection."""
        self._stopped = True
        await self._cancel_session()
        await self.connection.close()

    def schedule_restart(self) -> None:
        """Schedule a full restart unless one is already pending."""
        if self._stopped or self.restart_pending:
            return
        delay = self.config.reconnect_interval
        logger.warning(
            f"Restarting <{self.config.auth.user}> in {delay:g} seconds...",
            extra={"host": self.config.host, "delay_seconds": delay},
        )
        loop = asyncio.get_running_loop()
        self._restart_task = loop.create_task(self._restart_after(delay), name="restart")

    def _on_transport_error(self, exc: Exception) -> None:
        logger.error(
            f"Error detected on <{self.config.auth.user}>: {exc}",
            extra={"host": self.config.host},
        )
        self.schedule_restart()

    async def _restart_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self.restart_count += 1
        # Stays tracked in _restart_task while starting so stop() can cancel it.
        await self._start_session()

    def _schedule(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
        *,
        name: str,
    ) -> asyncio.Task[None]:
        async def _run() -> None:
            await asyncio.sleep(delay)
            await callback()

        task = asyncio.get_running_loop().create_task(_run(), name=name)
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)
        return task

    async def _flush_loaded(self) -> None:
        self.registry.flush_loaded()

    async def _cancel_session(self) -> None:
        if self._error_subscription is not None:
            self._error_subscription.dispose()
            self._error_subscription = None

        current = asyncio.current_task()
        pending = [t for t in self._timers if t is not current]
        if self._restart_task is not None and self._restart_task is not current:
            pending.append(self._restart_task)
            self._restart_task = None
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.poller.stop_all()
        self.registry.clear_loaded()


__all__ = ["ConnectionSupervisor"]
