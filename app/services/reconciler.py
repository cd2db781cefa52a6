"""
Persistence reconciler.

Commits one normalized message into the store in dependency order:
Address → Thread → Email → Attachment, then recomputes the thread's folder
flags from every email currently in the thread. Each step is
create-if-absent / update-if-present, so re-running it is safe.

The caller owns the transaction: nothing here commits.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models.address import Address
from app.models.attachment import Attachment
from app.models.email import Email
from app.models.thread import Thread
from app.services import db_service
from app.services.address_registry import upsert_address
from app.services.normalizer import EmailDraft, AddressDraft, INBOX, SENT, DRAFT

logger = logging.getLogger(__name__)


def derive_thread_folder(labels: Iterable[str]) -> str:
    """
    Folder of a thread given the labels of all its emails.

    Any inbox email makes the thread inbox; otherwise any draft makes it
    draft; otherwise it is sent.
    """
    folder = SENT
    for label in labels:
        if label == INBOX:
            return INBOX
        if label == DRAFT:
            folder = DRAFT
    return folder


def is_already_synced(db: Session, account_id: str, draft: EmailDraft) -> bool:
    """True when the account already stores an email with the draft's message identifier."""
    return db_service.find_email_by_message_id(db, draft.message_id, account_id=account_id) is not None


# ============ STEP 1: ADDRESSES ============

def _upsert_addresses(db: Session, account_id: str, draft: EmailDraft) -> Dict[str, Address]:
    return {
        address.address: upsert_address(db, account_id, address)
        for address in draft.all_addresses()
    }


def _lookup(address_map: Dict[str, Address], drafts: List[AddressDraft]) -> List[Address]:
    result = []
    for item in drafts:
        address = address_map.get(item.address)
        if address is not None and address not in result:
            result.append(address)
    return result


# ============ STEP 2: THREAD ============

def _participant_ids(draft: EmailDraft, address_map: Dict[str, Address]) -> List[int]:
    participants = [draft.from_address] if draft.from_address else []
    participants += draft.to + draft.cc + draft.bcc
    return [address.id for address in _lookup(address_map, participants)]


def _upsert_thread(
    db: Session,
    account_id: str,
    thread_id: str,
    draft: EmailDraft,
    participant_ids: List[int]
) -> Thread:
    thread = db.get(Thread, thread_id)

    if thread is None:
        thread = Thread(
            id=thread_id,
            account_id=account_id,
            subject=draft.subject,
            last_message_date=draft.timestamp,
            participant_ids=sorted(set(participant_ids))
        )
        db.add(thread)
        return thread

    if not thread.subject and draft.subject:
        thread.subject = draft.subject

    timestamp = draft.timestamp
    if timestamp and (thread.last_message_date is None or timestamp > thread.last_message_date):
        thread.last_message_date = timestamp

    # Participants only grow; assign a new list so the JSON change is tracked
    merged = sorted(set(thread.participant_ids or []) | set(participant_ids))
    if merged != list(thread.participant_ids or []):
        thread.participant_ids = merged

    return thread


# ============ STEP 3: EMAIL ============

def _apply_fields(email: Email, draft: EmailDraft, thread_id: Optional[str], address_map: Dict[str, Address]) -> None:
    email.thread_id = thread_id
    email.message_id = draft.message_id
    email.in_reply_to = draft.in_reply_to
    email.references = list(draft.references)

    from_address = address_map.get(draft.from_address.address) if draft.from_address else None
    email.from_id = from_address.id if from_address else None
    email.to = _lookup(address_map, draft.to)
    email.cc = _lookup(address_map, draft.cc)
    email.bcc = _lookup(address_map, draft.bcc)
    email.reply_to = _lookup(address_map, draft.reply_to)

    email.subject = draft.subject
    email.body_html = draft.body_html
    email.body_text = draft.body_text
    email.snippet = draft.snippet

    email.sent_at = draft.sent_at
    email.received_at = draft.received_at
    email.created_time = draft.created_time
    email.last_modified_time = draft.last_modified_time

    email.sys_labels = list(draft.sys_labels)
    email.email_label = draft.email_label
    email.folder = draft.folder
    email.has_attachments = draft.has_attachments
    email.is_read = draft.is_read
    email.is_starred = draft.is_starred


def _find_existing(db: Session, account_id: str, draft: EmailDraft) -> Optional[Email]:
    # Emails are owned by one account; another account's copy is never matched
    if draft.remote_id:
        existing = db.get(Email, draft.remote_id)
        if existing is not None and existing.account_id == account_id:
            return existing
    return db_service.find_email_by_message_id(db, draft.message_id, account_id=account_id)


# ============ STEP 4: ATTACHMENTS ============

def _upsert_attachments(db: Session, email: Email, draft: EmailDraft) -> None:
    for item in draft.attachments:
        attachment = db.get(Attachment, item.id)
        if attachment is None:
            attachment = Attachment(id=item.id, email_id=email.id)
            db.add(attachment)
        attachment.name = item.name
        attachment.mime_type = item.mime_type
        attachment.size = item.size
        attachment.content_id = item.content_id
        attachment.inline = item.inline
        attachment.content = item.content
        attachment.storage_path = item.storage_path


# ============ STEP 5: THREAD FLAGS ============

def recompute_thread_flags(db: Session, thread: Thread) -> str:
    """Recompute and set a thread's folder flags from all of its emails."""
    db.flush()
    labels = [email.email_label for email in db_service.find_emails_by_thread_id(db, thread.id)]
    folder = derive_thread_folder(labels)

    thread.inbox_status = folder == INBOX
    thread.sent_status = folder == SENT
    thread.draft_status = folder == DRAFT
    return folder


# ============ ENTRY POINT ============

def reconcile_email(
    db: Session,
    account_id: str,
    draft: EmailDraft,
    thread_id: Optional[str],
    refresh_existing: bool = False
) -> Optional[Email]:
    """
    Idempotently store one normalized message.

    Args:
        db: Database session (not committed here)
        account_id: Owning account
        draft: Normalized message
        thread_id: Thread resolved for the message, may be None
        refresh_existing: When the email already exists, refresh every field
            (provider sources are authoritative for edits). When False an
            existing email is left untouched.

    Returns:
        The stored Email, or None when it already existed and was not refreshed.

    Raises:
        AddressResolutionError: If any address could not be stored.
        SQLAlchemyError: On thread/email/attachment write failures.
    """
    existing = _find_existing(db, account_id, draft)
    if existing is not None and not refresh_existing:
        logger.debug("Email already synced: %s", draft.message_id)
        return None

    address_map = _upsert_addresses(db, account_id, draft)

    thread = None
    if thread_id:
        thread = _upsert_thread(db, account_id, thread_id, draft, _participant_ids(draft, address_map))
        db.flush()

    previous_thread_id = None
    if existing is None:
        email = Email(id=draft.remote_id or db_service.new_id(), account_id=account_id)
        db.add(email)
    else:
        email = existing
        previous_thread_id = existing.thread_id

    _apply_fields(email, draft, thread_id, address_map)
    db.flush()

    _upsert_attachments(db, email, draft)

    if thread is not None:
        recompute_thread_flags(db, thread)

    # An email that moved leaves its old thread with different flags
    if previous_thread_id and previous_thread_id != thread_id:
        previous_thread = db.get(Thread, previous_thread_id)
        if previous_thread is not None:
            recompute_thread_flags(db, previous_thread)

    db.flush()
    return email
