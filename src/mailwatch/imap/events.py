"""Typed publish/subscribe for mailbox events.

Three event kinds exist. ``arrived`` and ``loaded`` carry a
:class:`~mailwatch.imap.email_parser.Mail`; ``removed`` carries the UID of the
deleted message. Callbacks run synchronously, in registration order, on the
event loop thread that publishes the event.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Generic, List, TypeVar

if TYPE_CHECKING:  # pragma: no cover
    from .email_parser import Mail


logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventKind(str, Enum):
    """Kinds of events published by the watcher."""

    ARRIVED = "arrived"
    REMOVED = "removed"
    LOADED = "loaded"


MailCallback = Callable[["Mail"], Any]
UidCallback = Callable[[int], Any]


class Subscription:
    """Handle returned by every registration; ``dispose()`` unregisters."""

    def __init__(self, unsubscribe: Callable[[], None]) -> None:
        self._unsubscribe = unsubscribe
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._unsubscribe()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


class CallbackList(Generic[T]):
    """Ordered list of callbacks sharing one payload type."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: List[Callable[[T], Any]] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: Callable[[T], Any]) -> Subscription:
        if not callable(callback):
            raise TypeError(f"{self.name} callback must be callable, got {callback!r}")
        # one entry per registration, even for the same function
        entry = _Entry(callback)
        self._callbacks.append(entry)

        def _remove() -> None:
            try:
                self._callbacks.remove(entry)
            except ValueError:
                pass

        return Subscription(_remove)

    def publish(self, payload: T) -> None:
        for callback in list(self._callbacks):
            try:
                callback(payload)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    f"Subscriber for '{self.name}' raised",
                    exc_info=exc,
                    extra={"event": self.name},
                )

    def clear(self) -> None:
        self._callbacks.clear()


class _Entry:
    __slots__ = ("callback",)

    def __init__(self, callback: Callable[[Any], Any]) -> None:
        self.callback = callback

    def __call__(self, payload: Any) -> Any:
        return self.callback(payload)


class EventBus:
    """Event distribution for one watcher instance."""

    def __init__(self) -> None:
        self._arrived: CallbackList["Mail"] = CallbackList(EventKind.ARRIVED.value)
        self._removed: CallbackList[int] = CallbackList(EventKind.REMOVED.value)
        self._loaded: CallbackList["Mail"] = CallbackList(EventKind.LOADED.value)
        self._by_kind: Dict[EventKind, CallbackList[Any]] = {
            EventKind.ARRIVED: self._arrived,
            EventKind.REMOVED: self._removed,
            EventKind.LOADED: self._loaded,
        }

    # -- registration -----------------------------------------------------

    def on_arrived(self, callback: MailCallback) -> Subscription:
        return self._arrived.add(callback)

    def on_removed(self, callback: UidCallback) -> Subscription:
        return self._removed.add(callback)

    def on_loaded(self, callback: MailCallback) -> Subscription:
        return self._loaded.add(callback)

    def subscribe(self, kind: EventKind | str, callback: Callable[[Any], Any]) -> Subscription:
        """Register by event kind; ``kind`` may be the enum or its string value."""
        return self._by_kind[EventKind(kind)].add(callback)

    # -- publication ------------------------------------------------------

    def emit_arrived(self, mail: "Mail") -> None:
        self._arrived.publish(mail)

    def emit_removed(self, uid: int) -> None:
        self._removed.publish(uid)

    def emit_loaded(self, mail: "Mail") -> None:
        self._loaded.publish(mail)

    def subscriber_count(self, kind: EventKind | str) -> int:
        return len(self._by_kind[EventKind(kind)])


__all__ = ["EventBus", "EventKind", "Subscription", "CallbackList"]
