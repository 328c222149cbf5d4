"""Turn raw FETCH results into :class:`Mail` objects.

A fetch gives two byte blobs per message: the header block and the TEXT
body part. Both are parsed with the standard library ``email`` parser into a
flat field mapping; body fields are merged on top of header fields. The
``content`` of a mail is then derived from the plain text with a best-effort
heuristic that cuts off the trailing MIME boundary and whatever follows it
(signatures, client footers).
"""

from __future__ import annotations

import logging
from email.message import EmailMessage as StdEmailMessage
from email.parser import BytesParser
from email.policy import default as email_policy
from email.utils import getaddresses
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import html2text
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator

from .connection_manager import FetchedMessage

if TYPE_CHECKING:  # pragma: no cover
    from .watcher import MailWatcher

logger = logging.getLogger(__name__)

HEADER_FIELDS = {
    "subject": "Subject",
    "from": "From",
    "to": "To",
    "cc": "Cc",
    "reply_to": "Reply-To",
    "date": "Date",
    "message_id": "Message-ID",
    "in_reply_to": "In-Reply-To",
}


class EmailAddress(BaseModel):
    """Parsed email address with display name."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(..., description="Email address (user@domain.com)")
    display_name: Optional[str] = Field(default=None, description="Display name")

    @field_validator("address")
    @classmethod
    def _validate_address(cls, value: str) -> str:  # type: ignore[override]
        if "@" not in value or value.count("@") != 1:
            raise ValueError(f"Invalid email address: {value}")
        return value.lower()

    @classmethod
    def from_header(cls, header_value: str) -> List["EmailAddress"]:
        """Parse email addresses from a header value.

        Entries that are not valid addresses are skipped.
        """
        if not header_value or not header_value.strip():
            return []

        result = []
        for display_name, addr in getaddresses([header_value]):
            if not addr or "@" not in addr:
                continue
            try:
                result.append(
                    cls(
                        address=addr.strip(),
                        display_name=display_name.strip() if display_name else None,
                    )
                )
            except ValidationError:
                continue
        return result


class Mail(BaseModel):
    """A message of a watched mailbox.

    Instances are immutable. ``parsed`` holds the merged header/body fields
    the mail was built from.
    """

    model_config = ConfigDict(frozen=True)

    uid: int = Field(..., description="IMAP UID")
    seq: int = Field(..., description="Sequence number at fetch time")
    subject: str = Field(default="", description="Decoded subject")
    sender: Optional[EmailAddress] = Field(default=None, description="First From address")
    content: str = Field(default="", description="Body text without trailing boundary")
    mailbox_path: str = Field(..., description="Mailbox the mail was fetched from")
    parsed: Dict[str, Any] = Field(default_factory=dict, description="Merged parsed fields")

    _watcher: Any = PrivateAttr(default=None)

    def bind(self, watcher: Optional["MailWatcher"]) -> "Mail":
        self._watcher = watcher
        return self

    def _require_watcher(self) -> "MailWatcher":
        if self._watcher is None:
            raise RuntimeError("Mail is not bound to a watcher")
        return self._watcher

    async def delete(self) -> bool:
        """Delete this mail."""
        from .selectors import ExplicitIds

        return await self._require_watcher().delete_mails(self.mailbox_path, ExplicitIds([self.uid]))

    async def see(self) -> bool:
        """Mark this mail as seen."""
        from .selectors import ExplicitIds

        return await self._require_watcher().see_mails(self.mailbox_path, ExplicitIds([self.uid]))

    async def unsee(self) -> bool:
        """Mark this mail as unseen."""
        from .selectors import ExplicitIds

        return await self._require_watcher().unsee_mails(self.mailbox_path, ExplicitIds([self.uid]))


def extract_content(text: Optional[str]) -> str:
    """Strip the trailing boundary marker and everything after it.

    The last line is dropped; the line before it, minus its final two
    characters, is taken as the boundary marker. The text is cut at the
    first occurrence of that marker and trimmed. Returns ``""`` for empty
    input or whenever the heuristic cannot be applied.
    """
    if not text:
        return ""
    try:
        lines = text.split("\n")
        lines.pop()
        separator = lines[-1][:-2]
        return text.split(separator, 1)[0].strip()
    except Exception:  # noqa: BLE001
        return ""


class ContentExtractor:
    """Build :class:`Mail` objects from fetch results."""

    def __init__(self, *, watcher: Optional["MailWatcher"] = None) -> None:
        self.watcher = watcher
        self._parser = BytesParser(policy=email_policy)

        self.html_converter = html2text.HTML2Text()
        self.html_converter.ignore_links = False
        self.html_converter.ignore_images = True
        self.html_converter.ignore_emphasis = False
        self.html_converter.body_width = 0  # No line wrapping

    def build_mail(self, mailbox_path: str, fetched: FetchedMessage) -> Mail:
        fields = self.parse_fields(fetched.headers)
        if fetched.text is not None:
            fields.update(self.parse_fields(fetched.text))

        senders = EmailAddress.from_header(fields.get("from", ""))
        mail = Mail(
            uid=fetched.uid,
            seq=fetched.seq,
            subject=fields.get("subject") or "",
            sender=senders[0] if senders else None,
            content=extract_content(fields.get("text")),
            mailbox_path=mailbox_path,
            parsed=fields,
        )
        return mail.bind(self.watcher)

    def parse_fields(self, raw: bytes) -> Dict[str, Any]:
        """Parse an RFC822 fragment into a flat mapping of present fields."""
        msg = self._parser.parsebytes(raw or b"")
        fields: Dict[str, Any] = {}

        for key, header in HEADER_FIELDS.items():
            try:
                value = msg.get(header)
            except Exception as exc:  # noqa: BLE001
                logger.debug(f"Unreadable {header} header: {exc}")
                continue
            if value is not None:
                fields[key] = str(value).strip()

        plain = self._part_text(msg, "plain")
        html = self._part_text(msg, "html")
        if html:
            fields["html"] = html
        if plain:
            fields["text"] = plain
        elif html:
            fields["text"] = self.html_converter.handle(html)
        return fields

    def _part_text(self, msg: StdEmailMessage, subtype: str) -> Optional[str]:
        try:
            part = msg.get_body(preferencelist=(subtype,))
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"Could not locate text/{subtype} part: {exc}")
            return None
        if part is None or part.get_content_subtype() != subtype:
            return None
        try:
            content = part.get_content()
        except (LookupError, UnicodeError, KeyError, AssertionError):
            payload = part.get_payload(decode=True) or b""
            content = payload.decode("utf-8", errors="replace")
        if not isinstance(content, str) or not content:
            return None
        return content


__all__ = ["ContentExtractor", "EmailAddress", "Mail", "extract_content"]
