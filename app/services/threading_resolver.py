"""
Threading resolver: decides which Thread a normalized message belongs to.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from app.models.thread import Thread
from app.services import db_service
from app.services.normalizer import EmailDraft

logger = logging.getLogger(__name__)


def _reference_id(draft: EmailDraft) -> Optional[str]:
    if draft.in_reply_to:
        return draft.in_reply_to
    if draft.references:
        return draft.references[0]
    return None


def resolve_thread_id(db: Session, account_id: str, draft: EmailDraft) -> Optional[str]:
    """
    Find or create the thread for a message.

    1. An explicit remote thread id is used as-is.
    2. Otherwise In-Reply-To (or the first References entry) is looked up
       among the account's stored emails and that email's thread is reused.
    3. Otherwise, if the message has a subject, a new thread is created.

    Returns:
        The thread id, or None when the message has neither a resolvable
        reference nor a subject.
    """
    if draft.thread_id:
        return draft.thread_id

    reference_id = _reference_id(draft)
    if reference_id:
        parent = db_service.find_email_by_message_id(db, reference_id, account_id=account_id)
        if parent and parent.thread_id:
            return parent.thread_id

    if not draft.subject:
        logger.info("Message %s has no subject and no known parent, leaving it unthreaded", draft.message_id)
        return None

    thread = Thread(
        id=str(uuid.uuid4()),
        account_id=account_id,
        subject=draft.subject,
        last_message_date=draft.timestamp,
        participant_ids=[]
    )
    db.add(thread)
    db.flush()
    return thread.id
