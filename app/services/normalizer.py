"""
Message normalizer.

Turns one raw remote message into an EmailDraft, the canonical shape the
threading resolver and reconciler work on. Two inputs are supported:

- RFC 822 bytes fetched over IMAP (normalize_mime)
- JSON records returned by the provider's delta API (normalize_provider_record)

Every message resolves to a stable message identifier: the Message-ID header
when present, otherwise a deterministic fallback built from sender, subject
and send date.
"""

import base64
import email
import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.policy import default as email_policy
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any, Iterable, List, Optional, Tuple

from app.errors import MalformedMessageError
from app.services.text_cleaner import build_snippet

logger = logging.getLogger(__name__)

INBOX = "inbox"
SENT = "sent"
DRAFT = "draft"

# Characters kept verbatim in a fallback message identifier
_FALLBACK_ID_UNSAFE = re.compile(r"[^a-zA-Z0-9@.-]")


@dataclass
class AddressDraft:
    """A sender/recipient identity as found in the raw message."""
    address: str
    name: Optional[str] = None
    raw: Optional[str] = None


@dataclass
class AttachmentDraft:
    id: str
    name: str
    mime_type: str
    size: int = 0
    content_id: Optional[str] = None
    inline: bool = False
    content: Optional[str] = None
    storage_path: Optional[str] = None


@dataclass
class EmailDraft:
    """Normalized message, not yet persisted."""
    message_id: str
    subject: str = ""
    remote_id: Optional[str] = None
    thread_id: Optional[str] = None
    in_reply_to: Optional[str] = None
    references: List[str] = field(default_factory=list)

    from_address: Optional[AddressDraft] = None
    to: List[AddressDraft] = field(default_factory=list)
    cc: List[AddressDraft] = field(default_factory=list)
    bcc: List[AddressDraft] = field(default_factory=list)
    reply_to: List[AddressDraft] = field(default_factory=list)

    sent_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    created_time: Optional[datetime] = None
    last_modified_time: Optional[datetime] = None

    body_html: str = ""
    body_text: str = ""
    snippet: str = ""

    sys_labels: List[str] = field(default_factory=list)
    email_label: str = INBOX
    folder: Optional[str] = None
    has_attachments: bool = False
    is_read: bool = False
    is_starred: bool = False
    attachments: List[AttachmentDraft] = field(default_factory=list)

    def all_addresses(self) -> List[AddressDraft]:
        """Distinct addresses across every header, first occurrence wins."""
        seen = {}
        candidates = [self.from_address, *self.to, *self.cc, *self.bcc, *self.reply_to]
        for candidate in candidates:
            if candidate and candidate.address and candidate.address not in seen:
                seen[candidate.address] = candidate
        return list(seen.values())

    @property
    def timestamp(self) -> Optional[datetime]:
        return self.sent_at or self.received_at


# ============ SMALL HELPERS ============

def utcnow() -> datetime:
    """Naive UTC now, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_date(value: Any, fallback: Any = None) -> Optional[datetime]:
    """
    Parse an ISO-8601 or RFC 2822 date.

    Falls back to parsing `fallback` when `value` is missing or invalid, and
    returns None when neither parses.
    """
    if isinstance(value, datetime):
        return _to_naive_utc(value)

    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return _to_naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass
        try:
            return _to_naive_utc(parsedate_to_datetime(text))
        except (TypeError, ValueError, IndexError):
            pass

    if fallback is not None:
        return parse_date(fallback)
    return None


def classify_labels(sys_labels: Iterable[str]) -> str:
    """Map provider system labels to inbox, sent or draft."""
    labels = {label.lower() for label in sys_labels or [] if isinstance(label, str)}
    if SENT in labels:
        return SENT
    if DRAFT in labels:
        return DRAFT
    return INBOX


# ============ ADDRESSES ============

def _clean_address(address: str) -> str:
    return address.strip().lower()


def _drafts_from_string(value: str) -> List[AddressDraft]:
    drafts = []
    for name, addr in getaddresses([value]):
        if addr and addr.strip():
            drafts.append(AddressDraft(address=_clean_address(addr), name=name or None, raw=value.strip()))
    if not drafts and value.strip():
        drafts.append(AddressDraft(address=_clean_address(value), raw=value.strip()))
    return drafts


def address_drafts(field_value: Any) -> List[AddressDraft]:
    """
    Read addresses out of whatever shape the source provides.

    Accepts a header string, an object with `address`, an object with a
    `value` list, or a list of objects/strings. Unknown shapes yield [].
    """
    if not field_value:
        return []

    if isinstance(field_value, str):
        return _drafts_from_string(field_value)

    if isinstance(field_value, dict):
        address = field_value.get("address")
        if isinstance(address, str) and address.strip():
            return [AddressDraft(
                address=_clean_address(address),
                name=field_value.get("name") or None,
                raw=field_value.get("raw") or None
            )]
        if isinstance(field_value.get("value"), list):
            return address_drafts(field_value["value"])
        return []

    if isinstance(field_value, (list, tuple)):
        drafts = []
        for item in field_value:
            drafts.extend(address_drafts(item))
        return drafts

    return []


def extract_address(field_value: Any) -> str:
    """First address in the field, or an empty string."""
    drafts = address_drafts(field_value)
    return drafts[0].address if drafts else ""


def extract_addresses(field_value: Any) -> List[str]:
    """All addresses in the field, or an empty list."""
    return [draft.address for draft in address_drafts(field_value)]


# ============ MESSAGE IDENTIFIER ============

def fallback_message_id(sender: str, subject: str, sent_at: Optional[datetime]) -> str:
    """Deterministic identifier for messages without a Message-ID header."""
    date_part = sent_at.isoformat() if sent_at else ""
    return _FALLBACK_ID_UNSAFE.sub("_", f"{sender}:{subject}:{date_part}")


def resolve_message_id(
    native_id: Optional[str],
    headers: Iterable[Tuple[str, Any]],
    sender: str,
    subject: str,
    sent_at: Optional[datetime]
) -> str:
    """
    Resolve the message identifier.

    Precedence: the native Message-ID, then any case variant of the header
    among `headers`, then the deterministic fallback.
    """
    message_id = (native_id or "").strip() if isinstance(native_id, str) else ""

    if not message_id:
        for name, value in headers:
            if isinstance(name, str) and name.lower() == "message-id" and value and str(value).strip():
                message_id = str(value).strip()
                break

    if not message_id:
        message_id = fallback_message_id(sender, subject, sent_at)
        logger.warning("No Message-ID found, using deterministic id: %s", message_id)

    return message_id


def _split_references(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return value.split()
    if isinstance(value, (list, tuple)):
        return [str(ref).strip() for ref in value if ref and str(ref).strip()]
    return []


# ============ MIME (IMAP) ============

def _header(msg, name: str) -> str:
    value = msg.get(name)
    return str(value).strip() if value is not None else ""


def _header_drafts(msg, name: str) -> List[AddressDraft]:
    drafts = []
    for value in msg.get_all(name, []):
        drafts.extend(_drafts_from_string(str(value)))
    return drafts


def _decode_part(part) -> str:
    try:
        content = part.get_content()
    except (LookupError, UnicodeError, KeyError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return content


def _attachment_id(message_id: str, index: int, filename: str) -> str:
    return hashlib.sha1(f"{message_id}:{index}:{filename}".encode("utf-8")).hexdigest()


def _walk_parts(msg, message_id: str) -> Tuple[str, str, List[AttachmentDraft]]:
    body_text = ""
    body_html = ""
    attachments = []

    for index, part in enumerate(msg.walk()):
        if part.is_multipart():
            continue

        disposition = part.get_content_disposition()
        filename = part.get_filename()
        content_id = _header(part, "Content-ID") or None
        content_type = part.get_content_type()

        is_attachment = (
            disposition == "attachment"
            or bool(filename)
            or (content_id is not None and part.get_content_maintype() != "text")
        )

        if not is_attachment:
            if content_type == "text/plain" and not body_text:
                body_text = _decode_part(part)
            elif content_type == "text/html" and not body_html:
                body_html = _decode_part(part)
            continue

        payload = part.get_payload(decode=True) or b""
        inline = disposition == "inline" or content_id is not None
        name = filename or "attachment"
        attachments.append(AttachmentDraft(
            id=_attachment_id(message_id, index, name),
            name=name,
            mime_type=content_type,
            size=len(payload),
            content_id=content_id.strip("<>") if content_id else None,
            inline=inline,
            content=base64.b64encode(payload).decode("ascii") if inline else None
        ))

    return body_text, body_html, attachments


def normalize_mime(raw: bytes, flags: Iterable[Any] = (), folder: str = "INBOX") -> EmailDraft:
    """
    Normalize an RFC 822 message fetched over IMAP.

    Only the polled folder is fetched, so the label is always inbox.

    Raises:
        MalformedMessageError: If the source is empty or cannot be parsed.
    """
    if not raw or not isinstance(raw, (bytes, bytearray)):
        raise MalformedMessageError("Empty or non-bytes message source")

    try:
        msg = email.message_from_bytes(bytes(raw), policy=email_policy)

        from_drafts = _header_drafts(msg, "From")
        from_address = from_drafts[0] if from_drafts else None
        subject = _header(msg, "Subject")
        sent_at = parse_date(_header(msg, "Date"))

        message_id = resolve_message_id(
            native_id=_header(msg, "Message-ID"),
            headers=msg.items(),
            sender=from_address.address if from_address else "",
            subject=subject,
            sent_at=sent_at
        )

        body_text, body_html, attachments = _walk_parts(msg, message_id)
        in_reply_to = _header(msg, "In-Reply-To") or None
        references = _split_references(_header(msg, "References"))
    except (ValueError, TypeError, LookupError, UnicodeError, AttributeError) as e:
        raise MalformedMessageError(f"Could not parse message: {e}") from e

    flag_names = {
        (flag.decode() if isinstance(flag, bytes) else str(flag)).lower()
        for flag in flags
    }

    return EmailDraft(
        message_id=message_id,
        subject=subject,
        in_reply_to=in_reply_to,
        references=references,
        from_address=from_address,
        to=_header_drafts(msg, "To"),
        cc=_header_drafts(msg, "Cc"),
        bcc=_header_drafts(msg, "Bcc"),
        reply_to=_header_drafts(msg, "Reply-To"),
        sent_at=sent_at,
        received_at=sent_at or utcnow(),
        created_time=sent_at,
        last_modified_time=sent_at,
        body_html=body_html,
        body_text=body_text,
        snippet=build_snippet(body_text, body_html),
        sys_labels=[INBOX],
        email_label=INBOX,
        folder=folder,
        has_attachments=bool(attachments),
        is_read="\\seen" in flag_names,
        is_starred="\\flagged" in flag_names,
        attachments=attachments
    )


# ============ PROVIDER RECORDS ============

def _provider_attachments(records: Any) -> List[AttachmentDraft]:
    attachments = []
    for item in records or []:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        attachments.append(AttachmentDraft(
            id=str(item["id"]),
            name=item.get("name") or "attachment",
            mime_type=item.get("mimeType") or "application/octet-stream",
            size=int(item.get("size") or 0),
            content_id=item.get("contentId"),
            inline=bool(item.get("inline")),
            content=item.get("content"),
            storage_path=item.get("contentLocation")
        ))
    return attachments


def normalize_provider_record(record: dict) -> EmailDraft:
    """
    Normalize one record from the provider's delta API.

    Raises:
        MalformedMessageError: If the record is not an object or has no id.
    """
    if not isinstance(record, dict) or not record.get("id"):
        raise MalformedMessageError("Provider record without an id")

    created_time = parse_date(record.get("createdTime")) or utcnow()
    sent_at = parse_date(record.get("sentAt"), record.get("createdTime")) or created_time
    received_at = parse_date(record.get("receivedAt"), record.get("createdTime")) or created_time
    last_modified = parse_date(record.get("lastModifiedTime"), record.get("createdTime")) or created_time

    from_drafts = address_drafts(record.get("from"))
    from_address = from_drafts[0] if from_drafts else None
    subject = record.get("subject") or ""

    headers = [
        (header.get("name"), header.get("value"))
        for header in record.get("internetHeaders") or []
        if isinstance(header, dict)
    ]
    message_id = resolve_message_id(
        native_id=record.get("internetMessageId"),
        headers=headers,
        sender=from_address.address if from_address else "",
        subject=subject,
        sent_at=sent_at
    )

    sys_labels = [label for label in record.get("sysLabels") or [] if isinstance(label, str)]
    attachments = _provider_attachments(record.get("attachments"))
    body_html = record.get("body") or ""

    return EmailDraft(
        message_id=message_id,
        subject=subject,
        remote_id=str(record["id"]),
        thread_id=str(record["threadId"]) if record.get("threadId") else None,
        in_reply_to=record.get("inReplyTo") or None,
        references=_split_references(record.get("references")),
        from_address=from_address,
        to=address_drafts(record.get("to")),
        cc=address_drafts(record.get("cc")),
        bcc=address_drafts(record.get("bcc")),
        reply_to=address_drafts(record.get("replyTo")),
        sent_at=sent_at,
        received_at=received_at,
        created_time=created_time,
        last_modified_time=last_modified,
        body_html=body_html,
        snippet=record.get("bodySnippet") or build_snippet(body_html=body_html),
        sys_labels=sys_labels,
        email_label=classify_labels(sys_labels),
        folder=record.get("folderId"),
        has_attachments=bool(record.get("hasAttachments")) or bool(attachments),
        is_read="unread" not in {label.lower() for label in sys_labels},
        is_starred="flagged" in {label.lower() for label in sys_labels},
        attachments=attachments
    )
