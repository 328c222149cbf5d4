"""IMAP connection lifecycle and the shared mailbox lock.

The watcher talks to the server over exactly one connection. This module wraps
``imapclient.IMAPClient`` (a blocking client) in an asyncio-friendly facade:
every protocol call runs in a worker thread and all calls are serialized by a
single lock. Taking that lock for a mailbox also SELECTs the mailbox, so the
holder of a :class:`MailboxLock` can search, fetch and mutate without anyone
else changing the selected folder underneath it.

Transport failures (socket errors, aborted connections) mark the connection
as failed and are reported once per session to the handlers registered with
:meth:`ImapConnection.on_error`.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import certifi
from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError

from mailwatch.configuration import WatchConfig
from mailwatch.errors import ImapConnectionError, ImapOperationError, ImapTransportError

from .events import CallbackList, Subscription


logger = logging.getLogger(__name__)

SEEN = b"\\Seen"

# Errors that mean the socket is unusable.
TRANSPORT_ERRORS = (IMAPClientAbortError, OSError)

FETCH_ITEMS = ["BODY.PEEK[HEADER]", "BODY.PEEK[TEXT]", "FLAGS"]

# Seconds close() waits for an in-flight command before logging out anyway.
CLOSE_LOCK_TIMEOUT = 5.0

# A UID range such as "1:*", or a flag predicate such as {"seen": False}.
SearchCriteria = Union[str, Mapping[str, Any]]


# ---------------------------------------------------------------------------
# Connection state and metrics
# ---------------------------------------------------------------------------


class ConnectionState(str, Enum):
    """Lifecycle states for an IMAP connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass
class ConnectionMetrics:
    """Aggregated metrics for connection health reporting."""

    total_connections: int = 0
    successful_connections: int = 0
    failed_connections: int = 0
    transport_errors: int = 0
    average_connection_time: float = 0.0

    def record_attempt(self, success: bool, elapsed: float) -> None:
        self.total_connections += 1
        if success:
            self.successful_connections += 1
            self.average_connection_time += (
                elapsed - self.average_connection_time
            ) / max(1, self.successful_connections)
        else:
            self.failed_connections += 1

    def record_transport_error(self) -> None:
        self.transport_errors += 1


# ---------------------------------------------------------------------------
# Protocol data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ListedMailbox:
    """One entry of a LIST response."""

    path: str
    delimiter: Optional[str] = None
    flags: Tuple[str, ...] = ()

    @property
    def selectable(self) -> bool:
        return "\\NOSELECT" not in {f.upper() for f in self.flags}


@dataclass(frozen=True)
class FetchedMessage:
    """Raw FETCH result for one message."""

    uid: int
    seq: int
    headers: bytes
    text: Optional[bytes] = None
    flags: Tuple[str, ...] = field(default_factory=tuple)


class MailboxLock:
    """Exclusive hold on the connection with ``path`` selected.

    ``release()`` may be called any number of times; only the first call
    gives the lock back.
    """

    def __init__(self, path: str, release_cb: Callable[[], None]) -> None:
        self.path = path
        self._release_cb = release_cb
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._release_cb()

    async def __aenter__(self) -> "MailboxLock":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()


# ---------------------------------------------------------------------------
# Connection implementation
# ---------------------------------------------------------------------------


class ImapConnection:
    """The single live connection shared by every watcher component."""

    def __init__(
        self,
        config: WatchConfig,
        *,
        client_factory: Callable[..., IMAPClient] = IMAPClient,
    ) -> None:
        self.config = config
        self.metrics = ConnectionMetrics()
        self.state = ConnectionState.DISCONNECTED
        self._client_factory = client_factory
        self._client: Optional[IMAPClient] = None
        self._command_lock = asyncio.Lock()
        self._error_handlers: CallbackList[Exception] = CallbackList("error")
        self._error_reported = False
        self.selected_mailbox: Optional[str] = None

    # -- lifecycle --------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self.state == ConnectionState.CONNECTED

    async def connect(self) -> None:
        """Open a fresh connection and log in.

        Any previous client is logged out first.

        Raises:
            ImapConnectionError: If the socket, TLS handshake or login fails
        """
        await self.close()
        self.state = ConnectionState.CONNECTING
        logger.info(f"Trying to connect to <{self.config.auth.user}>...")
        start = time.perf_counter()
        try:
            client = await asyncio.to_thread(self._establish_connection)
        except Exception as exc:  # noqa: BLE001
            self.metrics.record_attempt(False, time.perf_counter() - start)
            self.state = ConnectionState.FAILED
            raise ImapConnectionError(
                f"Could not connect to <{self.config.auth.user}>: {exc}",
                details={"host": self.config.host, "port": self.config.port},
            ) from exc

        self.metrics.record_attempt(True, time.perf_counter() - start)
        self._client = client
        self._error_reported = False
        self.selected_mailbox = None
        self.state = ConnectionState.CONNECTED
        logger.info(f"Connected to <{self.config.auth.user}>")

    async def close(self) -> None:
        """Log out and drop the client. Never raises.

        Waits up to :data:`CLOSE_LOCK_TIMEOUT` for the command lock so the
        logout does not run alongside a command still using the client.
        """
        if self._client is None:
            self.selected_mailbox = None
            self.state = ConnectionState.DISCONNECTED
            return
        try:
            await asyncio.wait_for(self._command_lock.acquire(), CLOSE_LOCK_TIMEOUT)
            acquired = True
        except asyncio.TimeoutError:
            acquired = False
            logger.warning(
                f"Closing <{self.config.auth.user}> while a command is still running",
                extra={"host": self.config.host, "timeout_seconds": CLOSE_LOCK_TIMEOUT},
            )
        try:
            client, self._client = self._client, None
            self.selected_mailbox = None
            self.state = ConnectionState.DISCONNECTED
            if client is None:
                return
            try:
                await asyncio.to_thread(client.logout)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Error during logout", exc_info=exc)
        finally:
            if acquired:
                self._command_lock.release()

    def on_error(self, handler: Callable[[Exception], Any]) -> Subscription:
        """Register a handler called when the transport breaks."""
        return self._error_handlers.add(handler)

    def _establish_connection(self) -> IMAPClient:
        cfg = self.config
        client = self._client_factory(
            host=cfg.host,
            port=cfg.port,
            ssl=cfg.secure,
            ssl_context=self._create_ssl_context() if cfg.secure else None,
            timeout=cfg.timeout,
            use_uid=True,
        )
        try:
            self._authenticate(client)
        except Exception:
            try:
                client.logout()
            except Exception:  # noqa: BLE001
                pass
            raise
        return client

    def _create_ssl_context(self) -> ssl.SSLContext:
        tls = self.config.tls
        context = ssl.create_default_context()
        context.load_verify_locations(str(tls.ca_file) if tls.ca_file else certifi.where())
        context.minimum_version = getattr(ssl.TLSVersion, tls.min_version)
        if tls.verify:
            context.check_hostname = True
            context.verify_mode = ssl.CERT_REQUIRED
        else:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _authenticate(self, client: IMAPClient) -> None:
        auth = self.config.auth
        if auth.access_token is not None:
            client.oauth2_login(auth.user, auth.access_token.get_secret_value())
        else:
            client.login(auth.user, auth.password.get_secret_value())  # type: ignore[union-attr]

    # -- low level --------------------------------------------------------

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking client call in a worker thread and map its errors.

        The thread cannot be interrupted, so a cancelled caller waits for it
        to finish before the cancellation propagates. Locks held by the caller
        therefore stay held while the client is in use.
        """
        worker = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
        try:
            return await asyncio.shield(worker)
        except asyncio.CancelledError:
            await asyncio.wait([worker])
            if not worker.cancelled():
                worker.exception()
            raise
        except TRANSPORT_ERRORS as exc:
            self._report_transport_error(exc)
            raise ImapTransportError(str(exc) or type(exc).__name__) from exc
        except IMAPClientError as exc:
            raise ImapOperationError(str(exc)) from exc

    def _require_client(self) -> IMAPClient:
        if self._client is None or self.state != ConnectionState.CONNECTED:
            raise ImapTransportError("Not connected")
        return self._client

    def _report_transport_error(self, exc: Exception) -> None:
        self.metrics.record_transport_error()
        self.state = ConnectionState.FAILED
        if self._error_reported:
            return
        self._error_reported = True
        logger.warning(
            f"Transport error on <{self.config.auth.user}>: {exc}",
            extra={"host": self.config.host},
        )
        self._error_handlers.publish(exc)

    # -- mailbox operations -----------------------------------------------

    async def list_mailboxes(self) -> List[ListedMailbox]:
        """Return every mailbox the server knows about."""
        async with self._command_lock:
            client = self._require_client()
            folders = await self._call(client.list_folders)
        listed = []
        for flags, delimiter, name in folders:
            listed.append(
                ListedMailbox(
                    path=_to_str(name),
                    delimiter=_to_str(delimiter) if delimiter is not None else None,
                    flags=tuple(_to_str(f) for f in flags),
                )
            )
        return listed

    async def get_mailbox_lock(self, path: str) -> Optional[MailboxLock]:
        """Take the connection and SELECT ``path``.

        Returns ``None`` when not connected or when the mailbox cannot be
        selected. The caller must ``release()`` the returned lock.
        """
        if not self.is_connected:
            return None
        await self._command_lock.acquire()
        try:
            client = self._require_client()
            await self._call(client.select_folder, path)
        except (ImapTransportError, ImapOperationError) as exc:
            self._command_lock.release()
            logger.warning(f"Could not lock mailbox [{path}]: {exc}", extra={"mailbox": path})
            return None
        except BaseException:
            self._command_lock.release()
            raise
        self.selected_mailbox = path
        return MailboxLock(path, self._command_lock.release)

    async def fetch_messages(self, criteria: SearchCriteria) -> List[FetchedMessage]:
        """Search the selected mailbox and fetch headers and TEXT of the hits.

        Must be called while holding a :class:`MailboxLock`. Results are in
        ascending UID order.
        """
        client = self._require_client()
        uids = await self._call(client.search, _search_criteria(criteria))
        if not uids:
            return []
        uids = sorted(int(uid) for uid in uids)
        response: Dict[int, Dict[bytes, Any]] = await self._call(client.fetch, uids, FETCH_ITEMS)
        messages = []
        for uid in sorted(response):
            data = response[uid]
            messages.append(
                FetchedMessage(
                    uid=int(uid),
                    seq=int(data.get(b"SEQ", 0)),
                    headers=data.get(b"BODY[HEADER]") or b"",
                    text=data.get(b"BODY[TEXT]"),
                    flags=tuple(_to_str(f) for f in data.get(b"FLAGS", ())),
                )
            )
        return messages

    async def add_flags(self, uids: Sequence[int], flags: Sequence[bytes]) -> bool:
        """Add ``flags`` to ``uids`` in the selected mailbox.

        An empty ``uids`` stores nothing and returns ``False``.
        """
        if not uids:
            return False
        client = self._require_client()
        return await self._store("add_flags", client.add_flags, list(uids), list(flags))

    async def remove_flags(self, uids: Sequence[int], flags: Sequence[bytes]) -> bool:
        """Remove ``flags`` from ``uids`` in the selected mailbox."""
        if not uids:
            return False
        client = self._require_client()
        return await self._store("remove_flags", client.remove_flags, list(uids), list(flags))

    async def delete_messages(self, uids: Sequence[int]) -> bool:
        """Flag ``uids`` as deleted and expunge them."""
        if not uids:
            return False
        client = self._require_client()
        uid_list = list(uids)
        if not await self._store("delete", client.delete_messages, uid_list):
            return False
        try:
            if await self._call(client.has_capability, "UIDPLUS"):
                await self._call(client.expunge, uid_list)
            else:
                await self._call(client.expunge)
        except (ImapTransportError, ImapOperationError) as exc:
            logger.warning(f"Expunge failed: {exc}", extra={"mailbox": self.selected_mailbox})
            return False
        return True

    async def _store(self, op_name: str, func: Callable[..., Any], *args: Any) -> bool:
        try:
            await self._call(func, *args)
        except (ImapTransportError, ImapOperationError) as exc:
            logger.warning(
                f"{op_name} failed in [{self.selected_mailbox}]: {exc}",
                extra={"mailbox": self.selected_mailbox, "operation": op_name},
            )
            return False
        return True


def _search_criteria(criteria: SearchCriteria) -> List[Any]:
    if isinstance(criteria, str):
        return ["UID", criteria]
    if isinstance(criteria, Mapping):
        if "seen" in criteria:
            return ["SEEN"] if criteria["seen"] else ["UNSEEN"]
        if not criteria:
            return ["ALL"]
    raise ValueError(f"Unsupported search criteria: {criteria!r}")


def _to_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


__all__ = [
    "SEEN",
    "ConnectionMetrics",
    "ConnectionState",
    "FetchedMessage",
    "ImapConnection",
    "ListedMailbox",
    "MailboxLock",
    "SearchCriteria",
]
