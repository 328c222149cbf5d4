"""Selection of the messages a mutation acts on.

Callers either name UIDs directly (:class:`ExplicitIds`) or hand over mails
they received from the watcher (:class:`FromMessages`). Both are normalized
by :func:`resolve_uids` into one list of UIDs: duplicates removed, first
occurrence order kept.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple, Union

from mailwatch.errors import SelectorError

from .email_parser import Mail


@dataclass(frozen=True)
class ExplicitIds:
    """Messages named by UID."""

    uids: Tuple[int, ...]

    def __init__(self, uids: Iterable[int]) -> None:
        object.__setattr__(self, "uids", tuple(uids))


@dataclass(frozen=True)
class FromMessages:
    """Messages named by previously received :class:`Mail` objects."""

    mails: Tuple[Mail, ...]

    def __init__(self, mails: Iterable[Mail]) -> None:
        object.__setattr__(self, "mails", tuple(mails))


MailSelector = Union[ExplicitIds, FromMessages, Sequence[int], Sequence[Mail]]


def resolve_uids(selector: MailSelector) -> List[int]:
    """Normalize a selector into an ordered, deduplicated UID list.

    Plain sequences are accepted too: a sequence of ints is treated as
    :class:`ExplicitIds`, a sequence of mails as :class:`FromMessages`.

    Raises:
        SelectorError: If the selector or one of its items has the wrong type
    """
    if isinstance(selector, ExplicitIds):
        raw = [_check_uid(uid) for uid in selector.uids]
    elif isinstance(selector, FromMessages):
        raw = [_uid_of(mail) for mail in selector.mails]
    elif isinstance(selector, (list, tuple)):
        raw = [_uid_of(item) if isinstance(item, Mail) else _check_uid(item) for item in selector]
    else:
        raise SelectorError(
            f"Expected ExplicitIds, FromMessages or a list, got {type(selector).__name__}",
            details={"selector_type": type(selector).__name__},
        )

    return list(dict.fromkeys(raw))


def _uid_of(mail: object) -> int:
    if not isinstance(mail, Mail):
        raise SelectorError(f"Expected Mail, got {type(mail).__name__}")
    return mail.uid


def _check_uid(uid: object) -> int:
    # bool is an int subclass but never a UID
    if isinstance(uid, bool) or not isinstance(uid, int):
        raise SelectorError(f"Expected integer UID, got {uid!r}")
    if uid < 1:
        raise SelectorError(f"UIDs start at 1, got {uid}")
    return uid


__all__ = ["ExplicitIds", "FromMessages", "MailSelector", "resolve_uids"]
