"""Shared fixtures and an in-memory IMAP connection for watcher tests."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

from mailwatch.configuration import WatchConfig, parse_config
from mailwatch.errors import ImapConnectionError, ImapTransportError
from mailwatch.imap.connection_manager import (
    SEEN,
    FetchedMessage,
    ListedMailbox,
    MailboxLock,
    SearchCriteria,
)
from mailwatch.imap.events import CallbackList, Subscription


# ============================================================================
# Message builders
# ============================================================================


def make_fetched(
    uid: int,
    *,
    subject: str = "Test subject",
    sender: str = "Alice <alice@example.com>",
    body: Optional[str] = "Hello there\n--boundary123\n",
    seen: bool = False,
    seq: Optional[int] = None,
) -> FetchedMessage:
    """Build a fetch result the way the server would return it."""
    headers = f"From: {sender}\r\nSubject: {subject}\r\nTo: bob@example.com\r\n\r\n".encode()
    return FetchedMessage(
        uid=uid,
        seq=seq if seq is not None else uid,
        headers=headers,
        text=body.encode() if body is not None else None,
        flags=(SEEN.decode(),) if seen else (),
    )


# ============================================================================
# Fake connection
# ============================================================================


class FakeConnection:
    """In-memory stand-in for :class:`ImapConnection`.

    Mailboxes are dicts of uid -> :class:`FetchedMessage`. Every lock and
    store call is appended to ``log`` so tests can assert ordering.
    """

    def __init__(self, config: WatchConfig) -> None:
        self.config = config
        self.mailboxes: Dict[str, Dict[int, FetchedMessage]] = {}
        self.log: List[Tuple[Any, ...]] = []
        self.connected = False
        self.connect_calls = 0
        self.close_calls = 0
        self.connect_failures = 0
        self.list_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None
        self.lock_failures: set[str] = set()
        self.noselect: set[str] = set()
        self.connect_gate: Optional[asyncio.Event] = None
        self.store_result = True
        self.fetch_calls = 0
        self._lock = asyncio.Lock()
        self._selected: Optional[str] = None
        self._error_handlers: CallbackList[Exception] = CallbackList("error")

    # -- test helpers ----------------------------------------------------

    def add_messages(self, path: str, messages: Iterable[FetchedMessage]) -> None:
        box = self.mailboxes.setdefault(path, {})
        for msg in messages:
            box[msg.uid] = msg

    def fire_error(self, exc: Optional[Exception] = None) -> None:
        self._error_handlers.publish(exc or ImapTransportError("connection reset"))

    @property
    def error_handler_count(self) -> int:
        return len(self._error_handlers)

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    # -- ImapConnection surface ------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_failures:
            self.connect_failures -= 1
            self.connected = False
            raise ImapConnectionError("Could not connect to <tester>: refused")
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        self.connected = True

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False

    def on_error(self, handler: Callable[[Exception], Any]) -> Subscription:
        return self._error_handlers.add(handler)

    async def list_mailboxes(self) -> List[ListedMailbox]:
        if self.list_error is not None:
            raise self.list_error
        return [
            ListedMailbox(path=path, flags=("\\Noselect",) if path in self.noselect else ())
            for path in self.mailboxes
        ]

    async def get_mailbox_lock(self, path: str) -> Optional[MailboxLock]:
        if not self.connected or path in self.lock_failures or path not in self.mailboxes:
            self.log.append(("lock-failed", path))
            return None
        await self._lock.acquire()
        self._selected = path
        self.log.append(("lock", path))

        def _release() -> None:
            self.log.append(("release", path))
            self._selected = None
            self._lock.release()

        return MailboxLock(path, _release)

    async def fetch_messages(self, criteria: SearchCriteria) -> List[FetchedMessage]:
        assert self._selected is not None, "fetch without a mailbox lock"
        self.fetch_calls += 1
        self.log.append(("fetch", self._selected, criteria))
        if self.fetch_error is not None:
            raise self.fetch_error
        messages = sorted(self.mailboxes[self._selected].values(), key=lambda m: m.uid)
        if isinstance(criteria, dict) and "seen" in criteria:
            wanted = criteria["seen"]
            messages = [m for m in messages if (SEEN.decode() in m.flags) == wanted]
        return messages

    async def add_flags(self, uids: Sequence[int], flags: Sequence[bytes]) -> bool:
        if not uids:
            return False
        self.log.append(("add_flags", self._selected, list(uids), list(flags)))
        return self.store_result

    async def remove_flags(self, uids: Sequence[int], flags: Sequence[bytes]) -> bool:
        if not uids:
            return False
        self.log.append(("remove_flags", self._selected, list(uids), list(flags)))
        return self.store_result

    async def delete_messages(self, uids: Sequence[int]) -> bool:
        if not uids:
            return False
        self.log.append(("delete", self._selected, list(uids)))
        if self.store_result and self._selected is not None:
            for uid in uids:
                self.mailboxes[self._selected].pop(uid, None)
        return self.store_result


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def make_config() -> Callable[..., WatchConfig]:
    """Factory for configs with short intervals suitable for tests."""

    def _make(**overrides: Any) -> WatchConfig:
        payload: Dict[str, Any] = {
            "host": "imap.example.com",
            "auth": {"user": "tester@example.com", "password": "secret"},
            "mailboxes_to_watch": ["INBOX"],
            "reconnect_interval_ms": 20,
            "mailboxes_watch_interval_ms": 20,
            "settle_delay_ms": 10,
        }
        payload.update(overrides)
        return parse_config(payload)

    return _make


@pytest.fixture
def make_message() -> Callable[..., FetchedMessage]:
    return make_fetched


@pytest.fixture
def config(make_config) -> WatchConfig:
    return make_config()


@pytest.fixture
def make_connection() -> Callable[[WatchConfig], FakeConnection]:
    return FakeConnection


@pytest.fixture
def fake_connection(config) -> FakeConnection:
    return FakeConnection(config)
