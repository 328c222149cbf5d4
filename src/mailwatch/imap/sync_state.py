"""Per-mailbox watch state.

A :class:`MailboxState` is the in-memory watermark for one mailbox: the
highest UID already observed. There is no persistence; a new process starts
from a fresh full scan.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


# Watermark of a mailbox that holds no messages.
MIN_WATERMARK = 1


class MailboxState(BaseModel):
    """Watermark of a single mailbox."""

    path: str = Field(..., description="IMAP mailbox path")
    watermark: int = Field(
        default=MIN_WATERMARK, ge=MIN_WATERMARK, description="Highest UID observed"
    )


class PollResult(BaseModel):
    """Outcome of one poll of a watched mailbox."""

    path: str = Field(..., description="Mailbox that was polled")
    new_messages: List[int] = Field(
        default_factory=list, description="UIDs emitted as arrived, ascending"
    )
    watermark: int = Field(default=MIN_WATERMARK, description="Watermark after the poll")
    skipped: bool = Field(
        default=False, description="True when the poll did not run (overlap or unknown mailbox)"
    )
    error: str | None = Field(default=None, description="Error text if the poll failed")

    @property
    def has_changes(self) -> bool:
        """Check if the poll found new messages."""
        return bool(self.new_messages)


__all__ = ["MIN_WATERMARK", "MailboxState", "PollResult"]
